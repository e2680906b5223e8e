import os, sys
import tempfile
import unittest

# Ensure src/ is on sys.path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
SRC = os.path.join(ROOT, 'src')
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from PIL import Image

from stimuli import all_image_paths, image_name, image_path, make_placeholder_face


class TestStimuli(unittest.TestCase):
    def test_image_name(self):
        self.assertEqual(image_name('black_male_01', 'big', True), 'black_male_smile_01_big')
        self.assertEqual(image_name('asian_female_02', 'small', False), 'asian_female_nosmile_02_small')

    def test_image_path_extension_by_size(self):
        self.assertTrue(image_path('black_male_01', 'big', True, 'stimuli/images/').endswith('.jpeg'))
        self.assertTrue(image_path('black_male_01', 'small', True, 'stimuli/images/').endswith('.png'))

    def test_all_image_paths_respects_has_smile(self):
        individuals = [
            {'id': 'black_male_01', 'race': 'black', 'gender': 'male', 'has_smile': False},
            {'id': 'white_female_01', 'race': 'white', 'gender': 'female'},
        ]
        paths = all_image_paths(individuals, ['big', 'small'], 'x/')
        self.assertEqual(len(paths), 6)
        self.assertFalse(any('black_male_smile' in p for p in paths))

    def test_placeholder_face(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = make_placeholder_face('PRACTICE', 256, True, os.path.join(tmpdir, 'p', 'face.png'))
            self.assertTrue(os.path.getsize(path) > 0)
            with Image.open(path) as img:
                self.assertEqual(img.size, (256, 256))

if __name__ == '__main__':
    unittest.main()
