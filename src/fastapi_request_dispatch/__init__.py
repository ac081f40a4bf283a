"""FastAPI Request Dispatch - MVC-style request dispatch for ASGI applications."""

from fastapi_request_dispatch.adapters import (
    Controller,
    ControllerHandlerAdapter,
    FunctionHandlerAdapter,
    HandlerAdapter,
    HandlerMethod,
    HandlerMethodAdapter,
    LastModified,
    UrlFilenameViewController,
    default_adapters,
)
from fastapi_request_dispatch.app import DispatchApp
from fastapi_request_dispatch.asyncsupport import AsyncManager, DeferredResult, WebAsyncTask
from fastapi_request_dispatch.chain import DispatchPhase, ExecutionChain
from fastapi_request_dispatch.conditions import (
    ConsumesRequestCondition,
    HeadersRequestCondition,
    NameValueExpression,
    ParamsRequestCondition,
    PatternsRequestCondition,
    ProducesRequestCondition,
    RequestCondition,
    RequestMappingInfo,
    RequestMethod,
    RequestMethodsCondition,
)
from fastapi_request_dispatch.config import DispatchSettings
from fastapi_request_dispatch.context import (
    DispatchKind,
    DispatchResponse,
    RequestContext,
    current_context,
    current_locale,
)
from fastapi_request_dispatch.dispatcher import Dispatcher, RequestHandledEvent
from fastapi_request_dispatch.exception_resolvers import (
    HandlerExceptionResolver,
    ResponseStatusExceptionResolver,
    SimpleMappingExceptionResolver,
)
from fastapi_request_dispatch.exceptions import (
    AdapterNotFound,
    AmbiguousMapping,
    AsyncRequestCancelled,
    AsyncRequestTimeout,
    DispatchConfigurationError,
    DispatchException,
    DispatchInternalError,
    NoHandlerFound,
    ResponseStatusError,
    ViewResolutionError,
)
from fastapi_request_dispatch.flash import (
    FlashState,
    FlashStateManager,
    FlashStore,
    InMemoryFlashStore,
)
from fastapi_request_dispatch.interceptors import (
    AfterCompletion,
    AfterHandle,
    BeforeHandle,
    HandlerInterceptor,
    MappedInterceptor,
    WebRequestInterceptor,
    WebRequestInterceptorAdapter,
)
from fastapi_request_dispatch.log import configure_logging
from fastapi_request_dispatch.mapping import (
    HandlerResolver,
    RequestMappingResolver,
    UrlHandlerResolver,
    resolve_handler,
)
from fastapi_request_dispatch.patterns import PathPattern
from fastapi_request_dispatch.results import Result
from fastapi_request_dispatch.trace import DispatchTrace, TraceEntry
from fastapi_request_dispatch.views import (
    JSONView,
    MappingViewResolver,
    RedirectView,
    View,
    ViewResolver,
)

__all__ = [
    "AdapterNotFound",
    "AfterCompletion",
    "AfterHandle",
    "AmbiguousMapping",
    "AsyncManager",
    "AsyncRequestCancelled",
    "AsyncRequestTimeout",
    "BeforeHandle",
    "ConsumesRequestCondition",
    "Controller",
    "ControllerHandlerAdapter",
    "DeferredResult",
    "DispatchApp",
    "DispatchConfigurationError",
    "DispatchException",
    "DispatchInternalError",
    "DispatchKind",
    "DispatchPhase",
    "DispatchResponse",
    "DispatchSettings",
    "DispatchTrace",
    "Dispatcher",
    "ExecutionChain",
    "FlashState",
    "FlashStateManager",
    "FlashStore",
    "FunctionHandlerAdapter",
    "HandlerAdapter",
    "HandlerExceptionResolver",
    "HandlerInterceptor",
    "HandlerMethod",
    "HandlerMethodAdapter",
    "HandlerResolver",
    "HeadersRequestCondition",
    "InMemoryFlashStore",
    "JSONView",
    "LastModified",
    "MappedInterceptor",
    "MappingViewResolver",
    "NameValueExpression",
    "NoHandlerFound",
    "ParamsRequestCondition",
    "PathPattern",
    "PatternsRequestCondition",
    "ProducesRequestCondition",
    "RedirectView",
    "RequestCondition",
    "RequestContext",
    "RequestHandledEvent",
    "RequestMappingInfo",
    "RequestMappingResolver",
    "RequestMethod",
    "RequestMethodsCondition",
    "ResponseStatusError",
    "ResponseStatusExceptionResolver",
    "Result",
    "SimpleMappingExceptionResolver",
    "TraceEntry",
    "UrlFilenameViewController",
    "UrlHandlerResolver",
    "View",
    "ViewResolutionError",
    "ViewResolver",
    "WebAsyncTask",
    "WebRequestInterceptor",
    "WebRequestInterceptorAdapter",
    "configure_logging",
    "current_context",
    "current_locale",
    "default_adapters",
    "resolve_handler",
]
