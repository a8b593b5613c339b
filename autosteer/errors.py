from enum import Enum

"""
Error Handling
"""


# enum for different types of errors, which should be handled differently
class ErrorType(Enum):
    # reference line or boundary missing or degenerate, the tick skips guidance or turn creation and carries on
    UNUSABLE_INPUT = 0

    # offset or clip produced too few points or no valid intersections, the operation aborts and prior state is kept
    GEOMETRIC_FAILURE = 1

    # the turn creation delegate raised or returned an unusable path, replaced by the direct fallback construction
    SERVICE_FAILURE = 2

    # request payload missing elements or malformed field files, pass onto the operator
    BAD_INPUT_DATA = 3

    # unexpected logic error, should not be passed onto the operator
    ALGORITHM_ERROR = 4

    # offsetting split the field into several parts, only the largest is kept as the headland
    # this is a warning only, the headland is still returned
    OFFSET_WARNING = 5


# data struct for errors
class Error:
    def __init__(self, error_type, message, geometry=None):
        self.error_type = error_type
        self.message = message
        self.geometry = geometry  # optional

    def as_dict(self):
        error_dict = dict()
        error_dict["errorType"] = self.error_type.name
        error_dict["message"] = self.message
        if self.geometry is not None:  # optional
            error_dict["geometry"] = self.geometry
        return error_dict


# exception for failures that should be passed on to the operator, along with possible extra info
class GenerationError(Exception):
    def __init__(self, error_type, message, geometry=None):
        super().__init__(message)
        self.error = Error(error_type, message, geometry)


# exception for internal logic errors that should not, if the algorithms are functioning as expected, ever be raised
# if raised, they should not be passed on to the operator as they are not meaningful to the end user
class AlgorithmError(Exception):
    def __init__(self, message, geometry=None):
        super().__init__(message)
        self.error = Error(ErrorType.ALGORITHM_ERROR, message, geometry)


# function to transform error objects into a list of dictionaries in the format the handler returns
# all places constructing returns should use this for streamlining to make sure the structure is always correct
def make_error_list_return(errors):
    if isinstance(errors, Exception):
        errors = [errors.error]

    errors_dict = dict()
    error_list = list()
    for error in errors:
        error_list.append(error.as_dict())
    errors_dict["errors"] = error_list

    return errors_dict
