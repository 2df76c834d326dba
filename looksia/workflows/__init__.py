# LangGraph workflows
from looksia.workflows.analysis_flow import run_analysis
from looksia.workflows.spin_flow import run_spin

__all__ = ["run_spin", "run_analysis"]
