"""
Partner Hub
Blueprint registry.
"""

from partnerhub.blueprints.escalation_bp import escalation_bp
from partnerhub.blueprints.progress_report_bp import progress_report_bp, progress_report_public_bp

ALL_BLUEPRINTS = (escalation_bp, progress_report_public_bp, progress_report_bp)
