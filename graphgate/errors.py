# Exception Handlers
#
# The errors keep the full message, the router decides how much of it is shown:
# system and debug viewers get the detail, everybody else gets HIDDEN_LOG.
#
# The exceptions are caught in Router.do_request and formatted, for example:
# {
#      "title": "Authorization Error: ",
#      "detail": "Authorization Error: (debug logging disabled)",
#      "code": 403
# }
#
from http import HTTPStatus
from sqlalchemy.exc import DontWrapMixin
import graphgate

HIDDEN_LOG = "(debug logging disabled)"


class GraphError(Exception, DontWrapMixin):
    """
    Base class of the errors raised while a request travels through the router
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = "Error: "
    # the message of public errors is shown to every viewer, see to_dict
    public = False

    def __init__(self, message="", status_code=None, api_code=None):
        Exception.__init__(self, message)
        if status_code is not None:
            self.status_code = status_code
        self.api_code = api_code if api_code is not None else self.status_code
        self.detail = str(message)
        self.message = self.message + self.detail
        self.log(self.detail)

    def log(self, message):
        graphgate.log.error("%s: %s", self.__class__.__name__, message)

    def to_dict(self, detailed=False):
        """
        :param detailed: include the error detail (system/debug viewers)
        :return: jsonapi error object
        """
        if detailed or self.public:
            title = self.message
        else:
            title = self.__class__.message + HIDDEN_LOG
        return dict(title=title, detail=title, code=str(self.api_code))


class ValidationError(GraphError):
    """
    This exception is raised when invalid input has been detected (client side input)
    Always send back the message to the client in the response
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Validation Error: "
    public = True

    def log(self, message):
        graphgate.log.warning("%s: %s", self.__class__.__name__, message)


class RequestParseFailure(ValidationError):
    """
    The request entity could not be routed, or the method override isn't allowed
    """

    message = "Request Parse Failure: "


class InvalidFieldsRequested(ValidationError):
    """
    The `fields` query parameter names properties the object model doesn't know
    """

    message = "Invalid Fields Requested: "

    def __init__(self, invalid_fields, status_code=None, api_code=None):
        self.invalid_fields = list(invalid_fields)
        super().__init__(", ".join(self.invalid_fields), status_code, api_code)


class ProcessorRemovedProperties(ValidationError):
    """
    One or more pre-processors refused properties of the payload,
    all removals are reported at once
    """

    message = "Properties Removed: "

    def __init__(self, removed_properties, message="", status_code=None, api_code=None):
        self.removed_properties = list(removed_properties)
        super().__init__(message or ", ".join(self.removed_properties), status_code, api_code)


class PermissionDenied(GraphError):
    """
    This exception is raised when an authorization rule rejects the request
    we use FORBIDDEN(403) instead of UNAUTHORIZED(401) (old http status code descriptions were not clear)
    """

    status_code = HTTPStatus.FORBIDDEN.value
    message = "Authorization Error: "


class OperationNotPermitted(GraphError):
    """
    The resolved object API doesn't implement the requested HTTP method
    """

    status_code = HTTPStatus.METHOD_NOT_ALLOWED.value
    message = "Operation Not Permitted: "


class NotFoundError(GraphError):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    message = "NotFoundError "


class InvalidResponseShape(GraphError):
    """
    The data returned by the method handler doesn't validate against
    any of the response types permitted for the HTTP method
    """

    message = "Invalid Response Shape: "


class NoObjectData(GraphError):
    """
    Malformed or missing source data while mapping it onto an object template
    """

    message = "No Object Data: "


class GenericError(GraphError):
    """
    This exception is raised when an error has been detected
    """

    message = "Generic Error: "
