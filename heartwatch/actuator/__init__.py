"""
The remediation actuator.

Wraps the external lifecycle tool and the process table, reporting every
outcome as a typed Response.
"""

from .responses import Action, Response
from .output import interpret_output
from .app_manager import AppManager, AppManagerSettings, RemediationReport

__all__ = ["Action", "Response", "interpret_output", "AppManager", "AppManagerSettings", "RemediationReport"]
