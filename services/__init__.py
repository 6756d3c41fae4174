from services.content_aggregation import ContentAggregator
from services.assessment_generation_service import AssessmentGenerationService
from services.grading_service import GradingService

__all__ = [
    'ContentAggregator',
    'AssessmentGenerationService',
    'GradingService'
]
