import enum


class Stage(enum.Enum):
    MIDDLEWARE = "middleware"
    GUARDS = "guards"
    INTERCEPTORS = "interceptors"
    PIPES = "pipes"
    HANDLER = "handler"
    EXCEPTION_FILTER = "exception_filter"
    RESPOND = "respond"
