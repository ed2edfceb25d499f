"""Report model shared by the run pipeline and the terminal UI."""

from simmer.report.model import ReportModel, ReportSnapshot, ReportWriter, ViewState

__all__ = ["ReportModel", "ReportSnapshot", "ReportWriter", "ViewState"]
