"""Central model registry. Import all models so Alembic autodiscover works."""

from liquidation_api.database import Base  # noqa: F401

from liquidation_api.models.region import Region  # noqa: F401
from liquidation_api.models.hei import HEI  # noqa: F401
from liquidation_api.models.program import Program  # noqa: F401
from liquidation_api.models.semester import Semester  # noqa: F401
from liquidation_api.models.academic_year import AcademicYear  # noqa: F401
from liquidation_api.models.document_location import DocumentLocation  # noqa: F401
from liquidation_api.models.document_requirement import DocumentRequirement  # noqa: F401
from liquidation_api.models.user import User  # noqa: F401
from liquidation_api.models.liquidation import (  # noqa: F401
    Liquidation,
    LiquidationFinancial,
    LiquidationBeneficiary,
    LiquidationDocument,
)
from liquidation_api.models.review import LiquidationReview  # noqa: F401
from liquidation_api.models.transmittal import (  # noqa: F401
    LiquidationTransmittal,
    TransmittalLocationEvent,
)
from liquidation_api.models.compliance import LiquidationCompliance  # noqa: F401
from liquidation_api.models.running_data import LiquidationRunningData  # noqa: F401
from liquidation_api.models.control_number import ControlNumberSequence  # noqa: F401
from liquidation_api.models.activity_log import ActivityLog  # noqa: F401
from liquidation_api.models.notification import Notification  # noqa: F401
