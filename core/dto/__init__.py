"""
Data Transfer Objects (DTOs) for data validation.

This package contains Pydantic models for validating input data.
"""
from typing import Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError
from core.dto.affiliates import (
    RegisterAffiliateDTO,
    CommissionRateDTO,
    PayoutDetailsDTO,
)
from core.dto.attribution import (
    VisitContextDTO,
    AttributeReferralDTO,
)
from core.dto.ledger import (
    ReviewReferralDTO,
    WithdrawalRequestDTO,
    ProcessWithdrawalDTO,
)
from core.dto.leaderboard import (
    LeaderboardPeriod,
    LeaderboardMetric,
    LeaderboardQueryDTO,
)

DTOType = TypeVar("DTOType", bound=BaseModel)


def validate_dto(dto_class: Type[DTOType], **data) -> DTOType:
    """Build a DTO, turning pydantic errors into a ledger ValidationError."""
    try:
        return dto_class(**data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or dto_class.__name__
        raise ValidationError(field, first.get("msg", "invalid value")) from e


__all__ = [
    'validate_dto',
    'RegisterAffiliateDTO',
    'CommissionRateDTO',
    'PayoutDetailsDTO',
    'VisitContextDTO',
    'AttributeReferralDTO',
    'ReviewReferralDTO',
    'WithdrawalRequestDTO',
    'ProcessWithdrawalDTO',
    'LeaderboardPeriod',
    'LeaderboardMetric',
    'LeaderboardQueryDTO',
]
