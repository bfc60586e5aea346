from genstudio.models.subscription import TenantSubscription
from genstudio.models.api_call_log import ApiCallLog
from genstudio.models.business_profile import BusinessProfile
from genstudio.models.image_template import ImageTemplate
from genstudio.models.generation_request import GenerationRequest
from genstudio.models.artifact import Artifact

__all__ = [
    "TenantSubscription", "ApiCallLog", "BusinessProfile",
    "ImageTemplate", "GenerationRequest", "Artifact",
]
