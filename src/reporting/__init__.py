"""Run reports."""

from reporting.report import StageRecord, TestReport

__all__ = ['StageRecord', 'TestReport']
