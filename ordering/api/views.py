"""
GraphQL view with idempotency and logging support.
"""
import hashlib
import json
import logging
from uuid import uuid4

from ariadne import graphql_sync
from django.db import IntegrityError, transaction
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from graphql import FieldNode, GraphQLError, OperationDefinitionNode, OperationType, parse

from ordering.api.middleware import ErrorHandler, RequestValidationError, format_graphql_error
from ordering.api.schema import schema
from ordering.infra.models import IdempotencyKey
from ordering.infra.pii_masker import mask_pii_in_dict

logger = logging.getLogger(__name__)

# Mutation fields whose responses are replayed for a repeated Idempotency-Key.
IDEMPOTENT_MUTATIONS = {
    "addCartItem": "ADD_CART_ITEM",
    "updateCartItem": "UPDATE_CART_ITEM",
    "removeCartItem": "REMOVE_CART_ITEM",
    "mergeGuestCart": "MERGE_GUEST_CART",
    "checkout": "CHECKOUT",
    "guestCheckout": "GUEST_CHECKOUT",
    "confirmPayment": "CONFIRM_PAYMENT",
    "transitionStatus": "TRANSITION_STATUS",
    "recordShipment": "RECORD_SHIPMENT",
    "refundOrder": "REFUND_ORDER",
    "cancelGuestOrder": "GUEST_CANCEL",
}


class OrderingGraphQLView:
    """GraphQL view with idempotency and structured logging."""

    def dispatch(self, request):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        idempotency_key = request.headers.get("Idempotency-Key")
        user_ref = self._user_ref(request)

        logger.info(
            "graphql_request",
            extra={
                "request_id": request_id,
                "operation": "graphql",
                "idempotency_key": idempotency_key[:8] + "..." if idempotency_key else None,
                **mask_pii_in_dict({"user_id": user_ref}),
            },
        )

        try:
            if idempotency_key and request.method == "POST":
                response = self._process_idempotent(request, request_id, idempotency_key, user_ref)
            else:
                response = self._process_graphql_request(request)
        except Exception as e:
            response = ErrorHandler.handle_error(e)

        logger.info(
            "graphql_response",
            extra={"request_id": request_id, "status": response.status_code},
        )
        response["X-Request-ID"] = request_id
        return response

    def _process_idempotent(self, request, request_id, idempotency_key, user_ref) -> JsonResponse:
        data = self._load_body(request)
        mutation = self._extract_mutation(data)
        if mutation is None:
            return self._execute(request, data)
        operation, response_key = mutation

        request_hash = self._create_request_hash(data.get("query", ""), data.get("variables") or {})
        existing = IdempotencyKey.objects.filter(
            key=idempotency_key,
            user_ref=user_ref,
            operation=operation,
        ).first()

        if existing:
            if existing.request_hash == request_hash:
                logger.info(
                    "idempotent_request_cached",
                    extra={
                        "request_id": request_id,
                        "idempotency_key": idempotency_key,
                        "operation": operation,
                    },
                )
                return JsonResponse(existing.response_payload, status=existing.response_status)

            logger.warning(
                "idempotency_key_conflict",
                extra={"request_id": request_id, "idempotency_key": idempotency_key},
            )
            return ErrorHandler.error_response(
                "DUPLICATE_REQUEST",
                "Idempotency key already used with different request",
            )

        response = self._execute(request, data)
        result = json.loads(response.content)
        if response.status_code == 200 and self._succeeded(result, response_key):
            try:
                with transaction.atomic():
                    IdempotencyKey.objects.create(
                        key=idempotency_key,
                        user_ref=user_ref,
                        operation=operation,
                        request_hash=request_hash,
                        response_status=response.status_code,
                        response_payload=result,
                    )
            except IntegrityError as e:
                logger.error(
                    "failed_to_save_idempotency",
                    extra={"request_id": request_id, "error": str(e)},
                )
        return response

    def _process_graphql_request(self, request) -> JsonResponse:
        if request.method == "GET":
            return JsonResponse({"message": "GraphQL endpoint. Use POST for queries."})
        return self._execute(request, self._load_body(request))

    def _execute(self, request, data: dict) -> JsonResponse:
        success, result = graphql_sync(
            schema,
            data,
            context_value={"request": request},
            error_formatter=format_graphql_error,
        )
        return JsonResponse(result, status=200 if success else 400)

    def _load_body(self, request) -> dict:
        try:
            data = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise RequestValidationError("Invalid JSON")
        if not isinstance(data, dict):
            raise RequestValidationError("Request body must be a JSON object")
        return data

    def _extract_mutation(self, data: dict) -> tuple[str, str] | None:
        """Operation type and response key of the first field of the requested mutation."""
        try:
            document = parse(data.get("query") or "")
        except GraphQLError:
            return None
        operation_name = data.get("operationName")
        for definition in document.definitions:
            if not isinstance(definition, OperationDefinitionNode):
                continue
            if operation_name and (definition.name is None or definition.name.value != operation_name):
                continue
            if definition.operation != OperationType.MUTATION:
                return None
            for selection in definition.selection_set.selections:
                if isinstance(selection, FieldNode):
                    operation = IDEMPOTENT_MUTATIONS.get(selection.name.value)
                    if operation is None:
                        return None
                    response_key = selection.alias.value if selection.alias else selection.name.value
                    return operation, response_key
            return None
        return None

    def _succeeded(self, result: dict, response_key: str) -> bool:
        if result.get("errors"):
            return False
        payload = (result.get("data") or {}).get(response_key)
        return isinstance(payload, dict) and not payload.get("error")

    def _user_ref(self, request) -> str:
        user_id = request.headers.get("X-User-ID")
        if user_id:
            return f"customer:{user_id}"
        guest_id = request.headers.get("X-Guest-ID")
        if guest_id:
            return f"guest:{guest_id}"
        return "anonymous"

    def _create_request_hash(self, query: str, variables: dict) -> str:
        """Create hash of request for deduplication."""
        content = json.dumps({"query": query, "variables": variables}, sort_keys=True)
        return hashlib.sha256(content.encode()).hexdigest()


@csrf_exempt
@require_http_methods(["GET", "POST"])
def graphql_view(request):
    """GraphQL endpoint."""
    view = OrderingGraphQLView()
    return view.dispatch(request)
