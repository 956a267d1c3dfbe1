from prflow.contexts.procurement.infrastructure.repositories.approval_repository import ApprovalRepository
from prflow.contexts.procurement.infrastructure.repositories.assignment_repository import AssignmentRepository
from prflow.contexts.procurement.infrastructure.repositories.budget_exception_repository import (
    BudgetExceptionRepository,
)
from prflow.contexts.procurement.infrastructure.repositories.purchase_request_item_repository import (
    PurchaseRequestItemRepository,
)
from prflow.contexts.procurement.infrastructure.repositories.purchase_request_repository import (
    PurchaseRequestRepository,
)
from prflow.contexts.procurement.infrastructure.repositories.quotation_repository import QuotationRepository
from prflow.contexts.procurement.infrastructure.repositories.rfq_repository import RfqRepository
from prflow.contexts.procurement.infrastructure.repositories.status_event_repository import StatusEventRepository
from prflow.contexts.procurement.infrastructure.repositories.supplier_repository import SupplierRepository
from prflow.contexts.procurement.infrastructure.repositories.supplier_selection_repository import (
    SupplierSelectionRepository,
)

__all__ = [
    "ApprovalRepository",
    "AssignmentRepository",
    "BudgetExceptionRepository",
    "PurchaseRequestItemRepository",
    "PurchaseRequestRepository",
    "QuotationRepository",
    "RfqRepository",
    "StatusEventRepository",
    "SupplierRepository",
    "SupplierSelectionRepository",
]
