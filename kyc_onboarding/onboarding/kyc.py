"""Video KYC and location capture tracking per merchant."""

from pydantic import ValidationError as PydanticValidationError

from kyc_onboarding.errors import FieldError, ValidationError
from kyc_onboarding.utils.logger import get_logger

from .models import Coordinates, KYCRecord, utcnow
from .repository import InMemoryRepository, Repository

logger = get_logger(__name__)


class KYCService:
    """Keeps one :class:`KYCRecord` per merchant.

    Args:
        repository: Storage for KYC records keyed by merchant id.
    """

    def __init__(self, repository: Repository[KYCRecord] | None = None) -> None:
        self.repository = repository if repository is not None else InMemoryRepository()

    def get(self, merchant_id: str) -> KYCRecord:
        """Return the merchant's record, or a fresh empty one."""
        return self.repository.get(merchant_id) or KYCRecord(merchant_id=merchant_id)

    def capture_location(self, merchant_id: str, lat: float, lng: float) -> KYCRecord:
        """Record the merchant's geolocation.

        Raises:
            ValidationError: If latitude or longitude is out of range.
        """
        try:
            coordinates = Coordinates(lat=lat, lng=lng)
        except PydanticValidationError as exc:
            errors = [
                FieldError(str(err["loc"][0]), err["msg"], "INVALID_COORDINATES")
                for err in exc.errors()
            ]
            raise ValidationError("Invalid coordinates", errors) from exc

        record = self.get(merchant_id).model_copy(
            update={
                "location_captured": True,
                "coordinates": coordinates,
                "captured_address": f"{lat:.4f}, {lng:.4f}",
                "updated_at": utcnow(),
            }
        )
        self.repository.set(merchant_id, record)
        logger.info("Location captured for merchant %s", merchant_id)
        return record

    def complete_video_kyc(self, merchant_id: str, selfie_file_path: str) -> KYCRecord:
        """Mark video KYC done and keep the path of the captured selfie."""
        if not selfie_file_path.strip():
            raise ValidationError(
                "Selfie file path is required",
                [FieldError("selfie_file_path", "Selfie file path is required", "MISSING_SELFIE")],
            )
        record = self.get(merchant_id).model_copy(
            update={
                "video_kyc_completed": True,
                "selfie_file_path": selfie_file_path,
                "updated_at": utcnow(),
            }
        )
        self.repository.set(merchant_id, record)
        logger.info("Video KYC completed for merchant %s", merchant_id)
        return record

    def reset(self, merchant_id: str) -> KYCRecord:
        """Discard captured KYC data so the merchant can start over."""
        record = KYCRecord(merchant_id=merchant_id)
        self.repository.set(merchant_id, record)
        logger.info("KYC reset for merchant %s", merchant_id)
        return record

    def is_complete(self, merchant_id: str) -> bool:
        return self.get(merchant_id).is_complete
