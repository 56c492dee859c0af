"""Run reporting: per-stage results written as JSON and markdown."""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass
class StageRecord:
    """Result of a single stage."""
    name: str
    description: str
    status: str  # 'passed', 'failed', 'skipped'
    message: str = ''
    duration: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class TestReport:
    """Collects stage outcomes for one run and writes report files."""
    scenario: str
    report_dir: Optional[Path] = None
    work_dir: str = ''
    stages: list[StageRecord] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    success: bool = False
    error: str = ''

    _stage_start: Optional[datetime] = field(default=None, repr=False)
    _descriptions: dict = field(default_factory=dict, repr=False)

    # Not a test class, despite the name
    __test__ = False

    def start(self):
        """Mark run start."""
        self.started_at = datetime.now()
        if self.report_dir:
            self.report_dir.mkdir(parents=True, exist_ok=True)

    def start_stage(self, name: str, description: str = ''):
        self._stage_start = datetime.now()
        self._descriptions[name] = description

    def pass_stage(self, name: str, message: str = '', duration: float = 0.0):
        self._record(name, 'passed', message, duration)

    def fail_stage(self, name: str, message: str = '', duration: float = 0.0):
        self._record(name, 'failed', message, duration)

    def skip_stage(self, name: str, description: str = ''):
        self.stages.append(StageRecord(name=name, description=description, status='skipped'))

    def _record(self, name: str, status: str, message: str, duration: float):
        now = datetime.now()
        if duration == 0.0 and self._stage_start:
            duration = (now - self._stage_start).total_seconds()
        self.stages.append(StageRecord(
            name=name,
            description=self._descriptions.get(name, name),
            status=status,
            message=message,
            duration=duration,
            started_at=self._stage_start,
            finished_at=now,
        ))
        self._stage_start = None

    def status_of(self, name: str) -> Optional[str]:
        """Status of the last record for a stage, or None if never reached."""
        for record in reversed(self.stages):
            if record.name == name:
                return record.status
        return None

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def finish(self, success: bool, error: str = ''):
        """Finalize report and write files when a report dir is set."""
        self.finished_at = datetime.now()
        self.success = success
        self.error = error
        if self.report_dir:
            self._write_json()
            self._write_markdown()

    def to_dict(self) -> dict:
        data = {
            'scenario': self.scenario,
            'work_dir': self.work_dir,
            'success': self.success,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': round(self.duration, 1),
            'stages': [
                {
                    'name': s.name,
                    'description': s.description,
                    'status': s.status,
                    'message': s.message,
                    'duration': round(s.duration, 1),
                }
                for s in self.stages
            ],
        }
        if self.error:
            data['error'] = self.error
        return data

    def _write_json(self):
        with open(self._report_filename('json'), 'w', encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    def _write_markdown(self):
        lines = [
            f"# {self.scenario}",
            "",
            f"**Working directory**: {self.work_dir}",
            f"**Status**: {'PASSED' if self.success else 'FAILED'}",
            f"**Date**: {self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'}",
            f"**Duration**: {self.duration:.1f}s",
            "",
            "## Stages",
            "",
            "| Stage | Status | Duration | Message |",
            "|-------|--------|----------|---------|",
        ]
        for s in self.stages:
            message = s.message.replace('|', '\\|').replace('\n', ' ')
            lines.append(f"| {s.name} | {s.status} | {s.duration:.1f}s | {message} |")
        if self.error:
            lines.extend(["", "## Error", "", f"```\n{self.error}\n```"])
        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])

        with open(self._report_filename('md'), 'w', encoding="utf-8") as f:
            f.write('\n'.join(lines))

    def _report_filename(self, ext: str) -> Path:
        """Scenario name and pid are included so parallel runs do not collide."""
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        status = 'passed' if self.success else 'failed'
        slug = self.scenario.replace('/', '-')
        return self.report_dir / f"{timestamp}.{slug}.{os.getpid()}.{status}.{ext}"
