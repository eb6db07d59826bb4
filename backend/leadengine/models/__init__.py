from leadengine.models.lead import Lead, LeadSource, LeadStatus
from leadengine.models.auto_response import AutoResponse
from leadengine.models.score_event import ScoreEvent
from leadengine.models.account import Account, Deal
from leadengine.models.audit import AuditLog

__all__ = ["Lead", "LeadSource", "LeadStatus", "AutoResponse", "ScoreEvent", "Account", "Deal", "AuditLog"]
