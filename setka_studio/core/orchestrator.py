"""Batch generation: validation, charging, sequential dispatch and cancellation."""

import logging
from itertools import zip_longest
from typing import Callable, Iterator, List, Optional, Protocol, Sequence, Tuple

from setka_studio.core.backend_factory import BackendFactory, ProviderSpec
from setka_studio.core.base_backend import BaseBackend
from setka_studio.core.cancellation import CancellationToken
from setka_studio.core.exceptions import (
    GenerationCancelled,
    MalformedResponseError,
    PreconditionError,
    PreconditionReason,
    ProviderError,
    StudioError,
)
from setka_studio.core.models import (
    BatchState,
    ErrorReason,
    GenerationContext,
    GenerationRequest,
    GenerationResult,
    PaymentMode,
)
from setka_studio.core.retry import RetryController

logger = logging.getLogger(__name__)

PACING_DELAY_MS = 2500


class CreditGateway(Protocol):
    """Charges the current user for a batch."""

    def try_charge(self, amount: int) -> bool:
        """Atomically deduct ``amount``; return False if the balance is too low."""
        ...


class CredentialResolver(Protocol):
    """Supplies the provider credential for a payment mode."""

    def resolve_credential(self, payment_mode: PaymentMode) -> Optional[str]:
        ...


class GenerationBatch:
    """A submitted batch: placeholders plus the generator that fills them.

    ``results`` holds one pending result per request as soon as the batch is
    submitted. Iterating ``run()`` dispatches the requests one after another
    and yields every result as it reaches success or error.

    Attributes:
        results: Results in request order
        state: Current batch state
        token: Cancellation token shared with the retry controller
    """

    def __init__(
        self,
        requests: Sequence[GenerationRequest],
        results: List[GenerationResult],
        backend: BaseBackend,
        retry_controller: RetryController,
        token: CancellationToken,
        pacing_delay_ms: int = PACING_DELAY_MS,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self._requests = list(requests)
        self.results = results
        self.backend = backend
        self.retry_controller = retry_controller
        self.token = token
        self.pacing_delay_ms = pacing_delay_ms
        self._sleep = sleep
        self.state = BatchState.IDLE

    def cancel(self) -> None:
        """Stop the batch at the next checkpoint."""
        self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def _plan(self) -> List[Tuple[GenerationRequest, List[GenerationResult]]]:
        """Group requests into dispatch units.

        Providers with native multi-image output serve a batch of identical
        text-only requests with as few calls as possible; every other batch
        is one unit per request.
        """
        first = self._requests[0]
        native = (
            self.backend.capabilities.supports_batch_output
            and self.backend.max_images_per_call > 1
            and len(self._requests) > 1
            and not first.has_image_input
            and all(request == first for request in self._requests)
        )
        if not native:
            return [(request, [result]) for request, result in zip(self._requests, self.results)]

        size = self.backend.max_images_per_call
        return [(first, self.results[i:i + size]) for i in range(0, len(self.results), size)]

    def _dispatch(self, request: GenerationRequest, count: int) -> List[str]:
        if count == 1:
            return [self.backend.generate_image(request)]
        return self.backend.generate_images(request, count)

    def _pace(self) -> bool:
        """Wait between dispatches. Returns True if cancelled meanwhile."""
        seconds = self.pacing_delay_ms / 1000
        if self._sleep is not None:
            if seconds > 0:
                self._sleep(seconds)
            return self.token.cancelled
        return self.token.wait(seconds)

    def run(self) -> Iterator[GenerationResult]:
        """Process the batch, yielding each result as it settles.

        Every result leaves the pending state before the generator finishes,
        including when a backend raises something unexpected or the consumer
        stops iterating early.

        Yields:
            Updated results in dispatch order; on cancellation the remaining
            pending results are yielded with the ``cancelled`` reason

        Raises:
            RuntimeError: If the batch was already run
        """
        if self.state != BatchState.IDLE:
            raise RuntimeError(f"Batch already {self.state.value}")

        self.state = BatchState.RUNNING
        total = len(self.results)
        logger.info(f"Starting batch of {total} image(s) on {self.backend.name}")

        try:
            yield from self._process(self._plan())

            if self.token.cancelled:
                for result in self.results:
                    if result.is_pending:
                        result.mark_error(ErrorReason.CANCELLED, "Generation stopped by user")
                        yield result
                self.state = BatchState.CANCELLED
            else:
                self.state = BatchState.COMPLETED
        finally:
            if self.state == BatchState.RUNNING:
                # Consumer went away mid-batch; nothing may stay pending
                self.token.cancel()
                for result in self.results:
                    if result.is_pending:
                        result.mark_error(ErrorReason.CANCELLED, "Generation stopped")
                self.state = BatchState.CANCELLED

        succeeded = sum(1 for result in self.results if result.image)
        logger.info(f"Batch {self.state.value}: {succeeded}/{total} image(s) generated")

    def _process(
        self,
        units: List[Tuple[GenerationRequest, List[GenerationResult]]]
    ) -> Iterator[GenerationResult]:
        """Dispatch units in order until done or cancelled."""
        for index, (request, results) in enumerate(units):
            if index > 0 and self._pace():
                return
            if self.token.cancelled:
                return

            description = f"{self.backend.name} item {index + 1}/{len(units)}"
            try:
                images = self.retry_controller.call(
                    lambda: self._dispatch(request, len(results)),
                    token=self.token,
                    description=description,
                )
            except GenerationCancelled:
                return
            except StudioError as e:
                if self.token.cancelled:
                    return
                reason = (
                    ErrorReason.MALFORMED_RESPONSE
                    if isinstance(e, MalformedResponseError)
                    else ErrorReason.PROVIDER_ERROR
                )
                message = e.message if isinstance(e, ProviderError) else str(e)
                yield from self._fail(results, reason, message)
                continue
            except Exception as e:
                logger.exception(f"Unexpected error on {description}")
                if self.token.cancelled:
                    return
                yield from self._fail(results, ErrorReason.PROVIDER_ERROR, f"Unexpected error: {e}")
                continue

            if self.token.cancelled:
                logger.info("Discarding images that arrived after cancellation")
                return

            for result, image in zip_longest(results, images[:len(results)]):
                if image:
                    result.mark_success(image)
                else:
                    result.mark_error(
                        ErrorReason.MALFORMED_RESPONSE,
                        "Provider returned fewer images than requested",
                    )
                yield result

    @staticmethod
    def _fail(
        results: List[GenerationResult],
        reason: ErrorReason,
        message: str
    ) -> Iterator[GenerationResult]:
        for result in results:
            result.mark_error(reason, message)
            yield result

    def __repr__(self) -> str:
        return f"GenerationBatch(size={len(self.results)}, state={self.state.value})"


class GenerationOrchestrator:
    """Validates, charges for and starts generation batches.

    The orchestrator holds no session state: who pays and how is passed in
    with each batch, and the billing and credential collaborators answer for
    the current user.

    Attributes:
        billing: Charges the batch cost
        credentials: Resolves the provider credential
        retry_controller: Retry policy for provider calls
        pacing_delay_ms: Pause between successive dispatches
        backend_factory: Provider registry and backend factory
    """

    def __init__(
        self,
        billing: CreditGateway,
        credentials: CredentialResolver,
        retry_controller: Optional[RetryController] = None,
        pacing_delay_ms: int = PACING_DELAY_MS,
        sleep: Optional[Callable[[float], None]] = None,
        backend_factory: Optional[BackendFactory] = None
    ):
        """Initialize the orchestrator.

        Args:
            billing: Credit gateway of the current user
            credentials: Credential resolver of the current user
            retry_controller: Retry policy; defaults to 6 attempts from 2s
            pacing_delay_ms: Pause between successive dispatches in milliseconds
            sleep: Optional replacement for the token-based pacing sleep (tests)
            backend_factory: Optional factory; defaults to the built-in registry
        """
        if pacing_delay_ms < 0:
            raise ValueError("pacing_delay_ms must not be negative")

        self.billing = billing
        self.credentials = credentials
        self.retry_controller = retry_controller or RetryController()
        self.pacing_delay_ms = pacing_delay_ms
        self._sleep = sleep
        self.backend_factory = backend_factory or BackendFactory()

    def _resolve_provider(self, requests: Sequence[GenerationRequest]) -> ProviderSpec:
        provider_ids = {request.provider_id for request in requests}
        if len(provider_ids) > 1:
            raise PreconditionError(
                PreconditionReason.INCOMPATIBLE_REQUEST,
                f"A batch must use a single provider, got {sorted(provider_ids)}",
            )

        provider_id = provider_ids.pop()
        spec = self.backend_factory.get_spec(provider_id)
        if spec is None:
            raise PreconditionError(
                PreconditionReason.UNKNOWN_PROVIDER,
                f"Unknown provider: {provider_id}",
            )
        return spec

    def _check_capabilities(
        self,
        spec: ProviderSpec,
        requests: Sequence[GenerationRequest]
    ) -> None:
        capabilities = spec.capabilities

        if len(requests) > capabilities.max_batch_size:
            raise PreconditionError(
                PreconditionReason.BATCH_TOO_LARGE,
                f"{spec.display_name} generates at most {capabilities.max_batch_size} "
                f"image(s) per batch, got {len(requests)}",
            )

        for request in requests:
            if request.aspect_ratio not in capabilities.supported_aspect_ratios:
                raise PreconditionError(
                    PreconditionReason.UNSUPPORTED_ASPECT_RATIO,
                    f"{spec.display_name} does not support aspect ratio {request.aspect_ratio.value}",
                )

        with_images = [request.has_image_input for request in requests]
        if any(with_images) and not capabilities.supports_image_input:
            raise PreconditionError(
                PreconditionReason.INCOMPATIBLE_REQUEST,
                f"{spec.display_name} does not accept input images",
            )

        with_base = {request.base_image is not None for request in requests}
        if len(with_base) > 1:
            raise PreconditionError(
                PreconditionReason.INCOMPATIBLE_REQUEST,
                "A batch cannot mix requests with and without a base image",
            )

    def _resolve_credential(self, spec: ProviderSpec, context: GenerationContext) -> Optional[str]:
        if not spec.requires_credential:
            return None

        credential = self.credentials.resolve_credential(context.payment_mode)
        if not credential:
            raise PreconditionError(
                PreconditionReason.MISSING_CREDENTIAL,
                "No API key available. Add your own key in the profile or switch to credits.",
            )
        return credential

    def _charge(self, spec: ProviderSpec, count: int, context: GenerationContext) -> None:
        cost = 0
        if context.payment_mode == PaymentMode.CREDITS:
            cost = spec.capabilities.cost_per_image * count

        if not self.billing.try_charge(cost):
            raise PreconditionError(
                PreconditionReason.INSUFFICIENT_BALANCE,
                f"Not enough credits: {count} image(s) cost {cost}",
            )
        logger.info(f"Charged {cost} credit(s) for {count} image(s)")

    def submit_batch(
        self,
        requests: Sequence[GenerationRequest],
        context: GenerationContext,
        token: Optional[CancellationToken] = None
    ) -> GenerationBatch:
        """Validate and charge for a batch, then return it ready to run.

        Checks run in order: empty batch, provider, batch size, aspect ratio,
        image input, credential, balance. The first failing check raises and
        nothing is charged, created or dispatched.

        Args:
            requests: One request per output image
            context: Payment mode and user of the batch
            token: Optional cancellation token; a new one is created otherwise

        Returns:
            A GenerationBatch whose results are all pending

        Raises:
            PreconditionError: If any check fails
        """
        requests = list(requests)
        if not requests:
            raise PreconditionError(PreconditionReason.EMPTY_BATCH, "Nothing to generate")

        spec = self._resolve_provider(requests)
        self._check_capabilities(spec, requests)
        credential = self._resolve_credential(spec, context)

        backend = self.backend_factory.create_backend(
            spec.provider_id,
            credential=credential,
            image_input=requests[0].base_image is not None,
        )
        self._charge(spec, len(requests), context)

        results = [
            GenerationResult(
                prompt_used=request.prompt,
                aspect_ratio=request.aspect_ratio,
                provider_id=request.provider_id,
            )
            for request in requests
        ]
        logger.info(
            f"Submitted batch of {len(requests)} image(s) for provider {spec.provider_id} "
            f"({context.payment_mode.value})"
        )

        return GenerationBatch(
            requests,
            results,
            backend,
            self.retry_controller,
            token or CancellationToken(),
            pacing_delay_ms=self.pacing_delay_ms,
            sleep=self._sleep,
        )

    def regenerate(
        self,
        previous: GenerationResult,
        request: Optional[GenerationRequest],
        context: GenerationContext,
        token: Optional[CancellationToken] = None
    ) -> GenerationBatch:
        """Submit a one-image batch that repeats an earlier result.

        Args:
            previous: The result being regenerated
            request: The request to repeat; rebuilt from ``previous`` if None
            context: Payment mode and user of the batch
            token: Optional cancellation token

        Returns:
            A one-item GenerationBatch with a new result id

        Raises:
            PreconditionError: If any check fails
        """
        if request is None:
            request = GenerationRequest(
                prompt=previous.prompt_used,
                aspect_ratio=previous.aspect_ratio,
                provider_id=previous.provider_id,
            )

        logger.info(f"Regenerating result {previous.id}")
        return self.submit_batch([request], context, token=token)
