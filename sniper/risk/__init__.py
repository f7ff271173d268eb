"""Token safety assessment module."""

from sniper.risk.assessor import RiskAssessment, RiskAssessor

__all__ = ["RiskAssessment", "RiskAssessor"]
