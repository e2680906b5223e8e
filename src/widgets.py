"""Response widgets: PsychoPy implementations of the three prompt types.

Every widget runs its own frame loop through the renderer (so the progress
bar is drawn and the fidelity monitor is polled on each flip) and writes its
result into the ``PromptSlot`` it is given. The loop ends when the slot is
settled (submit or timeout) or when ``should_abort()`` turns true.

Mouse handling follows one rule everywhere: a click counts on the
press -> release edge, over the target.
"""
from __future__ import annotations

from typing import Any, Callable

from psychopy import core, event, visual

from responses import ChoicePrompt, CountGridPrompt, PromptSlot, SliderPairPrompt


class ClickTracker:
    """Edge-detects mouse releases (debounce)."""

    def __init__(self, mouse: Any) -> None:
        self.mouse = mouse
        self._was_pressed = False

    def released(self) -> bool:
        is_pressed = any(self.mouse.getPressed())
        just_released = self._was_pressed and not is_pressed
        self._was_pressed = is_pressed
        return just_released


class ChoiceWidget:
    """One button per option, laid out in a centered row."""

    def __init__(self, renderer: Any) -> None:
        self.renderer = renderer

    def present(self, prompt: ChoicePrompt, slot: PromptSlot, should_abort: Callable[[], bool]) -> None:
        r = self.renderer
        layout = r.layout
        mouse = event.Mouse(win=r.win)
        clicks = ClickTracker(mouse)
        question = r.text_stim(prompt.question, pos=(0, layout['question_y']))
        positions = r.button_row(len(prompt.options), y=0)

        slot.start(core.getTime())
        while not slot.settled and not should_abort():
            now = core.getTime()
            if slot.poll_timeout(now):
                break
            question.draw()
            rects = [
                r.draw_button(label, pos, mouse, enabled=True)
                for label, pos in zip(prompt.options, positions)
            ]
            r.flip()
            if not clicks.released():
                continue
            for i, rect in enumerate(rects):
                if rect.contains(mouse):
                    choice = prompt.options[i]
                    slot.touch('choice', choice)
                    slot.submit({'choice': choice, 'index': i}, core.getTime())
                    break


class SliderPairWidget:
    """Rating slider plus confidence slider; submit is enabled once both were moved."""

    CONFIDENCE_QUESTION = 'How confident are you in this rating?'
    CONFIDENCE_ANCHORS = ('Not at all confident', 'Completely confident')

    def __init__(self, renderer: Any) -> None:
        self.renderer = renderer

    def _slider(self, anchors: tuple[str, str], y: float, prompt: SliderPairPrompt) -> Any:
        layout = self.renderer.layout
        return visual.Slider(
            self.renderer.win,
            ticks=(prompt.scale_min, prompt.scale_max),
            labels=list(anchors),
            granularity=1,
            style='slider',
            size=(layout['slider_width'], layout['slider_height']),
            pos=(0, y),
            labelHeight=layout['button_label_height'],
            font=layout['font_main'],
        )

    def present(self, prompt: SliderPairPrompt, slot: PromptSlot, should_abort: Callable[[], bool]) -> None:
        r = self.renderer
        layout = r.layout
        mouse = event.Mouse(win=r.win)
        clicks = ClickTracker(mouse)

        image_y = layout['question_y'] + 160
        image = None
        if prompt.image_size is not None:
            image = r.image_stim(prompt.image_path, prompt.image_size, (0, image_y), label='PRACTICE')
        question = r.text_stim(prompt.question, pos=(0, layout['question_y']))
        rating = self._slider((prompt.low_anchor, prompt.high_anchor), 100, prompt)
        confidence_q = r.text_stim(self.CONFIDENCE_QUESTION, pos=(0, -20))
        confidence = self._slider(self.CONFIDENCE_ANCHORS, -100, prompt)
        submit_pos = (0, layout['instruction_button_y'])

        slot.start(core.getTime())
        while not slot.settled and not should_abort():
            if slot.poll_timeout(core.getTime()):
                break
            if image is not None:
                image.draw()
            question.draw()
            rating.draw()
            confidence_q.draw()
            confidence.draw()

            values = {'rating': rating.getRating(), 'confidence': confidence.getRating()}
            for name, value in values.items():
                if value is not None:
                    slot.touch(name, value)
            ready = all(v is not None for v in values.values())
            submit = r.draw_button('Submit', submit_pos, mouse, enabled=ready)
            r.flip()

            if clicks.released() and ready and submit.contains(mouse):
                slot.submit(values, core.getTime())


class CountGridWidget:
    """One row per field with - / + buttons, and a running total."""

    def __init__(self, renderer: Any) -> None:
        self.renderer = renderer

    def present(self, prompt: CountGridPrompt, slot: PromptSlot, should_abort: Callable[[], bool]) -> None:
        r = self.renderer
        layout = r.layout
        mouse = event.Mouse(win=r.win)
        clicks = ClickTracker(mouse)
        gap = layout['count_field_gap']
        counts = {name: 0 for name in prompt.fields}

        question = r.text_stim(prompt.question, pos=(0, layout['question_y']))
        total_stim = r.text_stim('', pos=(0, layout['question_y'] - 60))
        top = (len(prompt.fields) - 1) * gap / 2.0
        rows = []
        for i, name in enumerate(prompt.fields):
            y = top - i * gap
            rows.append((
                name,
                r.text_stim(prompt.labels.get(name, name), pos=(-220, y)),
                r.text_stim('0', pos=(60, y)),
                (0, y),
                (120, y),
            ))
        submit_pos = (0, layout['instruction_button_y'])

        slot.start(core.getTime())
        while not slot.settled and not should_abort():
            if slot.poll_timeout(core.getTime(), keep_partial=prompt.keep_partial_on_timeout):
                break
            question.draw()
            total = sum(counts.values())
            total_stim.text = f"Total: {total} / {prompt.expected_total}"
            total_stim.color = 'green' if total == prompt.expected_total else 'white'
            total_stim.draw()

            buttons = []
            for name, label, value_stim, minus_pos, plus_pos in rows:
                label.draw()
                value_stim.text = str(counts[name])
                value_stim.draw()
                minus = r.draw_button('-', minus_pos, mouse, enabled=counts[name] > 0, width=50)
                plus = r.draw_button(
                    '+', plus_pos, mouse, enabled=counts[name] < prompt.max_value, width=50
                )
                buttons.append((name, minus, plus))
            submit = r.draw_button('Submit', submit_pos, mouse, enabled=True)
            r.flip()

            if not clicks.released():
                continue
            if submit.contains(mouse):
                slot.submit(dict(counts), core.getTime())
                break
            for name, minus, plus in buttons:
                if minus.contains(mouse) and counts[name] > 0:
                    counts[name] -= 1
                elif plus.contains(mouse) and counts[name] < prompt.max_value:
                    counts[name] += 1
                else:
                    continue
                slot.touch(name, counts[name])
                break
