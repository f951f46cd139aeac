from rest_framework import status
from rest_framework.exceptions import APIException


class PipelineError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Pipeline operation failed.'
    default_code = 'pipeline_error'


class NotFoundError(PipelineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Record not found.'
    default_code = 'not_found'


class ValidationError(PipelineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'invalid'


class AlreadyConvertedError(PipelineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Enquiry has already been converted.'
    default_code = 'already_converted'


class ConflictError(PipelineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Record was modified concurrently.'
    default_code = 'conflict'


class PermissionDeniedError(PipelineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'
    default_code = 'permission_denied'
