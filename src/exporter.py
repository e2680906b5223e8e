"""Dataset assembly and export of one finished session.

The payload is posted once to the configured sink as a ``data`` form field.
Delivery is fire-and-forget: a send counts as done when the request does not
raise. There is no retry. When the endpoint is missing or the send fails the
results are written locally (CSV + JSON) so the researcher still has them.
"""
from __future__ import annotations

import csv
import json
import os
from datetime import datetime, timezone
from typing import Any, NamedTuple

import requests
from psychopy import logging

from config_loader import get_output_dir
from experiment_types import ExportConfig, ExportPayloadDict

DATA_DIR = get_output_dir()


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class DatasetAssembler:
    """Builds the export payload from a session, its monitor and its design."""

    def __init__(self, timestamp=_iso_now) -> None:
        self._timestamp = timestamp

    def build(self, session: Any, monitor: Any, design: Any) -> ExportPayloadDict:
        payload: dict[str, Any] = {
            'experiment': design.tag,
            'participant_id': session.id,
            'timestamp': self._timestamp(),
            'demographics': dict(session.demographics),
            'zoom_tracking': monitor.tracking_data(),
        }
        payload[design.dataset_key] = [outcome.as_dict() for outcome in session.outcomes]
        return payload  # type: ignore[return-value]


class SheetsExporter:
    """Posts a payload to the spreadsheet sink."""

    def __init__(self, endpoint: str, timeout: float = 10.0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout

    def send(self, payload: ExportPayloadDict) -> bool:
        """Submit ``payload`` once. Every call is a separate submission.

        Returns:
            False if serialization or the request raised, otherwise True.
        """
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as e:
            logging.error(f"Could not serialize export payload: {e}")
            return False
        try:
            response = requests.post(self.endpoint, data={'data': body}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logging.error(f"Export to {self.endpoint} failed: {e}")
            return False
        logging.info(f"Export submitted to {self.endpoint} (HTTP {response.status_code})")
        return True


class ResultsWriter:
    """Writes a payload locally: one CSV row per outcome plus the full JSON document."""

    def __init__(self, output_dir: str | None = None) -> None:
        self.output_dir = output_dir or DATA_DIR

    def save(self, payload: ExportPayloadDict, dataset_key: str = 'trials') -> tuple[str, str]:
        """Persist results.

        Returns:
            (csv_path, json_path)
        """
        ts = datetime.now().strftime('%Y%m%d_%H%M%S_%f')[:-3]
        os.makedirs(self.output_dir, exist_ok=True)
        base = f"{payload.get('experiment', 'session')}_{payload.get('participant_id', '')}_{ts}"
        stem, n = base, 1
        # Each export keeps its own files, even within the same millisecond
        while os.path.exists(os.path.join(self.output_dir, f'{stem}.json')):
            n += 1
            stem = f'{base}_{n}'
        csv_path = os.path.join(self.output_dir, f'{stem}.csv')
        json_path = os.path.join(self.output_dir, f'{stem}.json')

        rows = list(payload.get(dataset_key, []))  # type: ignore[call-overload]
        fieldnames: list[str] = ['participant_id']
        for row in rows:
            for key in row:
                if key not in fieldnames:
                    fieldnames.append(key)

        with open(csv_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, restval='')
            writer.writeheader()
            for row in rows:
                writer.writerow({'participant_id': payload.get('participant_id', ''), **row})

        with open(json_path, 'w', encoding='utf-8') as mf:
            json.dump(payload, mf, ensure_ascii=False, indent=2)
        return csv_path, json_path


class ExportResult(NamedTuple):
    sent: bool
    local_paths: tuple[str, str] | None
    payload: ExportPayloadDict


class Exporter:
    """Assembles, sends and (if needed) saves a session's dataset.

    Never raises: failures are logged and reflected in the returned
    ``ExportResult``.
    """

    def __init__(
        self,
        config: ExportConfig | None = None,
        sender: SheetsExporter | None = None,
        writer: ResultsWriter | None = None,
        assembler: DatasetAssembler | None = None,
    ) -> None:
        config = config or {}
        endpoint = config.get('endpoint', '')
        self.keep_local_copy = bool(config.get('keep_local_copy', True))
        self.sender = sender or (
            SheetsExporter(endpoint, float(config.get('timeout_seconds', 10))) if endpoint else None
        )
        self.writer = writer or ResultsWriter()
        self.assembler = assembler or DatasetAssembler()

    def export(self, session: Any, monitor: Any, design: Any) -> ExportResult:
        payload = self.assembler.build(session, monitor, design)
        return export_session(payload, design.dataset_key, self.sender, self.writer, self.keep_local_copy)


def export_session(
    payload: ExportPayloadDict,
    dataset_key: str,
    sender: SheetsExporter | None,
    writer: ResultsWriter,
    keep_local_copy: bool = True,
) -> ExportResult:
    sent = False
    if sender is None:
        logging.warning("No export endpoint configured; saving results locally only")
    else:
        sent = sender.send(payload)
        if sent:
            logging.info(f"Session {payload.get('participant_id')} exported")
        else:
            logging.error(f"Session {payload.get('participant_id')} export FAILED; saving locally")

    local_paths = None
    if keep_local_copy or not sent:
        try:
            local_paths = writer.save(payload, dataset_key)
            logging.info(f"Local copy written: {local_paths[0]}")
        except OSError as e:
            logging.error(f"Could not write local results: {e}")
    return ExportResult(sent=sent, local_paths=local_paths, payload=payload)
