"""Exceptions raised while adding p-values to a table."""


class AddPError(Exception):
    """Base class for all addp errors."""


class ConfigurationError(AddPError, ValueError):
    """Invalid arguments detected before any test is run."""

    def __init__(self, message: str, argument: str | None = None):
        self.argument = argument
        if argument and f"`{argument}`" not in message:
            message = f"Error in argument `{argument}`: {message}"
        super().__init__(message)


class TestContractError(AddPError, TypeError):
    """A custom test function returned a result that breaks the calling contract."""

    __test__ = False  # not a pytest test class

    def __init__(self, variable: str, message: str):
        self.variable = variable
        super().__init__(
            f"Custom test for variable '{variable}' {message}. A custom test must be "
            "called as fn(data, variable, by, **kwargs) and return a mapping or object "
            "with a numeric 'p' and a string 'test'."
        )


class TestExecutionError(AddPError, RuntimeError):
    """A statistical test failed while computing the p-value of a variable."""

    __test__ = False

    def __init__(self, variable: str, test: str, cause: BaseException):
        self.variable = variable
        self.test = test
        super().__init__(
            f"There was an error calculating the p-value for variable '{variable}' "
            f"with test '{test}': {cause}"
        )
