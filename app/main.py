"""Main Gradio application for Setka Studio image generation."""

import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple
from PIL import Image
import gradio as gr
import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from app.config import settings
from app.relay import create_app
from setka_studio.backends.gemini import GEMINI_IMAGE_MODEL
from setka_studio.core.backend_factory import BackendFactory, default_resolution
from setka_studio.core.exceptions import PreconditionError
from setka_studio.core.models import (
    AspectRatio,
    GenerationContext,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    PaymentMode,
    ReferenceImage,
)
from setka_studio.core.orchestrator import GenerationBatch, GenerationOrchestrator
from setka_studio.core.retry import RetryController
from setka_studio.utils.account_ledger import PASSWORD_LENGTH, AccountLedger, generate_secret
from setka_studio.utils.favorites_manager import ROOT_FOLDER, FavoriteCategory, FavoritesManager
from setka_studio.utils.image_utils import (
    ImageFormat,
    create_downloadable_image,
    crop_to_aspect_ratio,
    load_image_bytes,
    pil_to_reference,
    reference_from_bytes,
)
from setka_studio.utils.prompt_builder import (
    AvatarSelections,
    BackgroundOption,
    Blur,
    ClothingOption,
    EditSelections,
    EditStyle,
    FaceShotType,
    FilmGrain,
    Gender,
    LightingStyle,
    OutputMode,
    PhotoSelections,
    PhotoStyle,
    PortraitSelections,
    ShotType,
    Vignette,
    CAMERA_ISO_VALUES,
    CAMERA_SHUTTER_SPEEDS,
    build_avatar_prompt,
    build_edit_prompt,
    build_photo_prompt,
    build_portrait_prompt,
    photo_prompt_has_content,
    portrait_variations,
)

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


backend_factory = BackendFactory(relay_url=settings.relay_url, timeout=settings.timeout)
retry_controller = RetryController(settings.max_retries, settings.retry_base_delay_ms)

ledger = AccountLedger(shared_api_key=settings.gemini_api_key or None)
ledger.create_user(settings.default_username, credits=settings.initial_credits)
if settings.auth_enabled:
    ledger.create_user(
        settings.admin_username,
        credits=settings.admin_credits,
        password=settings.admin_password,
    )

favorites = FavoritesManager()


@dataclass
class Session:
    """UI state of one logged-in user.

    Attributes:
        active_batch: Batch currently running, if any
        results: Results of the last batch
        requests: Requests that produced ``results``
        gallery_result_ids: Result ids in gallery order (successes only)
    """
    active_batch: Optional[GenerationBatch] = None
    results: List[GenerationResult] = field(default_factory=list)
    requests: List[GenerationRequest] = field(default_factory=list)
    gallery_result_ids: List[str] = field(default_factory=list)


sessions: Dict[str, Session] = {}


def current_user(request: Optional[gr.Request] = None) -> str:
    """Logged-in username, or the local demo user when login is off."""
    username = getattr(request, "username", None) if request is not None else None
    return username or settings.default_username


def get_session(username: str) -> Session:
    return sessions.setdefault(username.strip().lower(), Session())


def is_admin(username: str) -> bool:
    """Without login the single local user administers the app."""
    if not settings.auth_enabled:
        return True
    return username.strip().lower() == settings.admin_username.strip().lower()


def authenticate(username: str, password: str) -> bool:
    """Gradio login callback."""
    accepted = ledger.authenticate(username, password)
    if not accepted:
        logger.warning(f"Failed login for {username}")
    return accepted


def _choices(enum_class) -> List[Tuple[str, str]]:
    return [(member.value.replace("_", " ").title(), member.value) for member in enum_class]


def create_orchestrator(username: str) -> GenerationOrchestrator:
    """Orchestrator bound to the user's account."""
    gateway = ledger.for_user(username)
    return GenerationOrchestrator(
        billing=gateway,
        credentials=gateway,
        retry_controller=retry_controller,
        pacing_delay_ms=settings.pacing_delay_ms,
        backend_factory=backend_factory,
    )


def current_context(username: str) -> GenerationContext:
    account = ledger.get_user(username)
    return GenerationContext(payment_mode=account.payment_mode, username=username)


def get_account_summary(username: str) -> str:
    """Balance and payment mode of the user."""
    account = ledger.get_user(username)
    if account is None:
        return f"👤 {username} | account not found"
    mode = "own API key" if account.payment_mode == PaymentMode.API_KEY else "credits"
    key_state = "set" if account.api_key else "not set"
    return f"👤 {account.username} | 💳 {account.credits} credits | Paying with: {mode} | API key: {key_state}"


def _display_image(image: str):
    if image.startswith("data:"):
        return Image.open(io.BytesIO(load_image_bytes(image)))
    return image


def _gallery(session: Session) -> list:
    session.gallery_result_ids.clear()
    items = []
    for result in session.results:
        if result.status == GenerationStatus.SUCCESS:
            items.append((_display_image(result.image), result.prompt_used[:80]))
            session.gallery_result_ids.append(result.id)
    return items


def _status_report(session: Session, batch: Optional[GenerationBatch] = None) -> str:
    lines = []
    for number, result in enumerate(session.results, start=1):
        if result.status == GenerationStatus.SUCCESS:
            lines.append(f"#{number} ✅ done")
        elif result.status == GenerationStatus.ERROR:
            lines.append(f"#{number} ❌ {result.error_reason.value}: {result.error_message or ''}")
        else:
            lines.append(f"#{number} ⏳ pending")
    if batch is not None:
        lines.append(f"Batch: {batch.state.value}")
    return "\n".join(lines)


def _message(username: str, text: str) -> Tuple[list, str, str]:
    return _gallery(get_session(username)), text, get_account_summary(username)


def _run_batch(username: str, requests: List[GenerationRequest]) -> Iterator[Tuple[list, str, str]]:
    """Submit a batch and stream (gallery, status, account) updates."""
    session = get_session(username)

    if session.active_batch is not None:
        yield _message(username, "⚠️ A generation is already running. Stop it first.")
        return

    try:
        batch = create_orchestrator(username).submit_batch(requests, current_context(username))
    except PreconditionError as e:
        logger.warning(f"Batch refused ({e.reason.value}): {e}")
        yield _message(username, f"❌ {e}")
        return

    session.active_batch = batch
    session.results[:] = batch.results
    session.requests[:] = requests
    yield _gallery(session), _status_report(session, batch), get_account_summary(username)

    try:
        for _ in batch.run():
            yield _gallery(session), _status_report(session, batch), get_account_summary(username)
    finally:
        session.active_batch = None

    yield _gallery(session), _status_report(session, batch), get_account_summary(username)


def stop_generation(request: gr.Request = None) -> str:
    """Cancel the user's running batch."""
    session = get_session(current_user(request))
    if session.active_batch is None:
        return "Nothing is running"
    session.active_batch.cancel()
    return "⏹️ Stopping after the current image..."


def _upload_reference(image: Image.Image, aspect_ratio: Optional[AspectRatio] = None) -> ReferenceImage:
    """Encode an upload, center-cropped to the aspect ratio when one is given."""
    reference = pil_to_reference(image)
    if aspect_ratio is None:
        return reference
    return reference_from_bytes(crop_to_aspect_ratio(reference.data, aspect_ratio))


def generate_photos(
    prompt: str,
    provider_id: str,
    aspect_ratio: str,
    count: int,
    reference_image: Optional[Image.Image],
    variation_strength: int,
    style_image: Optional[Image.Image],
    style_enabled: bool,
    style: str,
    custom_style: str,
    camera_enabled: bool,
    aperture: float,
    shutter_speed: str,
    iso: str,
    focal_length: int,
    lighting_enabled: bool,
    lighting: str,
    custom_lighting: str,
    effects_enabled: bool,
    film_grain: str,
    blur: str,
    vignette: str,
    aspect_directive_enabled: bool,
    negative_prompt_enabled: bool,
    negative_prompt: str,
    request: gr.Request = None
):
    """Generate photos from text, optionally varying an uploaded image."""
    username = current_user(request)
    if not prompt.strip() and reference_image is None:
        yield _message(username, "Error: Please enter a prompt")
        return

    try:
        ratio = AspectRatio(aspect_ratio)
        selections = PhotoSelections(
            prompt=prompt,
            style_enabled=style_enabled,
            style=PhotoStyle(style),
            custom_style=custom_style,
            camera_enabled=camera_enabled,
            aperture=aperture,
            shutter_speed=shutter_speed,
            iso=iso,
            focal_length=int(focal_length),
            lighting_enabled=lighting_enabled,
            lighting=LightingStyle(lighting),
            custom_lighting=custom_lighting,
            effects_enabled=effects_enabled,
            film_grain=FilmGrain(film_grain),
            blur=Blur(blur),
            vignette=Vignette(vignette),
            aspect_directive_enabled=aspect_directive_enabled,
            aspect_ratio=ratio,
            negative_prompt_enabled=negative_prompt_enabled,
            negative_prompt=negative_prompt,
        )
        # With a base image and nothing selected the backend applies its own variation text
        composed = build_photo_prompt(selections) if photo_prompt_has_content(selections) else ""

        use_style_image = (
            style_image is not None and selections.style_enabled and selections.style == PhotoStyle.UPLOAD
        )
        reference_images = [pil_to_reference(reference_image)] if reference_image is not None else []
        generation_request = GenerationRequest(
            prompt=composed,
            reference_images=reference_images,
            style_image=_upload_reference(style_image, ratio) if use_style_image else None,
            aspect_ratio=ratio,
            resolution_hint=default_resolution(ratio),
            provider_id=provider_id,
            variation_strength=int(variation_strength) if reference_images else None,
        )
    except (ValidationError, ValueError) as e:
        yield _message(username, f"❌ Invalid input: {e}")
        return

    yield from _run_batch(username, [generation_request] * int(count))


def generate_portraits(
    photo: Optional[Image.Image],
    shot_type: str,
    clothing: str,
    custom_clothing: str,
    background: str,
    custom_background: str,
    aspect_ratio: str,
    output_mode: str,
    request: gr.Request = None
):
    """Generate angle or expression variations of an uploaded portrait."""
    username = current_user(request)
    if photo is None:
        yield _message(username, "Error: Please upload a photo")
        return

    try:
        selections = PortraitSelections(
            shot_type=ShotType(shot_type),
            clothing=ClothingOption(clothing),
            custom_clothing=custom_clothing,
            background=BackgroundOption(background),
            custom_background=custom_background,
            aspect_ratio=AspectRatio(aspect_ratio),
        )
        reference = pil_to_reference(photo)
        requests = [
            GenerationRequest(
                prompt=build_portrait_prompt(selections, text),
                reference_images=[reference],
                aspect_ratio=selections.aspect_ratio,
                resolution_hint=default_resolution(selections.aspect_ratio),
                provider_id=GEMINI_IMAGE_MODEL,
            )
            for _, text in portrait_variations(OutputMode(output_mode))
        ]
    except (ValidationError, ValueError) as e:
        yield _message(username, f"❌ Invalid input: {e}")
        return

    yield from _run_batch(username, requests)


def edit_photo(
    photo: Optional[Image.Image],
    adjustments_enabled: bool,
    grain: int,
    blur: int,
    contrast: int,
    brightness: int,
    saturation: int,
    sharpness: int,
    vignette: int,
    style_enabled: bool,
    style: str,
    custom_style: str,
    request: gr.Request = None
):
    """Apply adjustments and a style to an uploaded photo."""
    username = current_user(request)
    if photo is None:
        yield _message(username, "Error: Please upload a photo")
        return

    try:
        selections = EditSelections(
            adjustments_enabled=adjustments_enabled,
            grain=int(grain),
            blur=int(blur),
            contrast=int(contrast),
            brightness=int(brightness),
            saturation=int(saturation),
            sharpness=int(sharpness),
            vignette=int(vignette),
            style_enabled=style_enabled,
            style=EditStyle(style),
            custom_style=custom_style,
        )
        generation_request = GenerationRequest(
            prompt=build_edit_prompt(selections),
            reference_images=[pil_to_reference(photo)],
            provider_id=GEMINI_IMAGE_MODEL,
        )
    except (ValidationError, ValueError) as e:
        yield _message(username, f"❌ Invalid input: {e}")
        return

    yield from _run_batch(username, [generation_request])


def create_avatars(
    gender: str,
    shot_type: str,
    age_range: str,
    ethnicity: str,
    ethnic_coherence: bool,
    eye_color: str,
    hair_color: str,
    hair_length: str,
    facial_hair: str,
    expression: str,
    count: int,
    request: gr.Request = None
):
    """Generate new faces from attribute selections."""
    username = current_user(request)
    try:
        selections = AvatarSelections(
            gender=Gender(gender),
            shot_type=FaceShotType(shot_type),
            age_range=age_range,
            ethnicity=ethnicity,
            ethnic_coherence=ethnic_coherence,
            eye_color=eye_color,
            hair_color=hair_color,
            hair_length=hair_length,
            facial_hair=facial_hair,
            expression=expression,
        )
        generation_request = GenerationRequest(
            prompt=build_avatar_prompt(selections),
            provider_id=GEMINI_IMAGE_MODEL,
        )
    except (ValidationError, ValueError) as e:
        yield _message(username, f"❌ Invalid input: {e}")
        return

    yield from _run_batch(username, [generation_request] * int(count))


def _selected_result(session: Session, index: int) -> Optional[GenerationResult]:
    if index < 0 or index >= len(session.gallery_result_ids):
        return None
    result_id = session.gallery_result_ids[index]
    return next((result for result in session.results if result.id == result_id), None)


def regenerate_selected(index: int, request: gr.Request = None):
    """Generate the selected image again with the same request."""
    username = current_user(request)
    session = get_session(username)

    previous = _selected_result(session, index)
    if previous is None:
        yield _message(username, "Select an image first")
        return
    if session.active_batch is not None:
        yield _message(username, "⚠️ A generation is already running. Stop it first.")
        return

    position = session.results.index(previous)
    original = session.requests[position] if position < len(session.requests) else None

    try:
        batch = create_orchestrator(username).regenerate(previous, original, current_context(username))
    except PreconditionError as e:
        yield _message(username, f"❌ {e}")
        return

    session.active_batch = batch
    session.results[position] = batch.results[0]
    try:
        for _ in batch.run():
            yield _gallery(session), _status_report(session, batch), get_account_summary(username)
    finally:
        session.active_batch = None


def on_gallery_select(evt: gr.SelectData, request: gr.Request = None) -> Tuple[int, str]:
    """Remember the selected gallery image and describe it."""
    result = _selected_result(get_session(current_user(request)), evt.index)
    if result is None:
        return -1, "Image not found"
    info = (
        f"**Prompt:** {result.prompt_used}\n\n"
        f"**Provider:** {result.provider_id}\n\n"
        f"**Aspect ratio:** {result.aspect_ratio.value}\n\n"
        f"**Created:** {result.created_at.strftime('%Y-%m-%d %H:%M:%S')}"
    )
    return evt.index, info


def download_selected(index: int, format_choice: str, request: gr.Request = None) -> Optional[str]:
    """Write the selected image to a temporary file for download.

    Returns:
        Path to the temporary file, or None if nothing is selected
    """
    result = _selected_result(get_session(current_user(request)), index)
    if result is None:
        logger.warning("No image selected for download")
        return None

    format_map = {
        "PNG": ImageFormat.PNG,
        "JPEG": ImageFormat.JPEG,
        "WebP": ImageFormat.WEBP
    }
    image_bytes, filename = create_downloadable_image(
        result,
        format=format_map.get(format_choice, ImageFormat.PNG)
    )

    temp_path = os.path.join(tempfile.gettempdir(), filename)
    with open(temp_path, 'wb') as f:
        f.write(image_bytes)

    logger.info(f"Created download: {filename} ({len(image_bytes)} bytes) at {temp_path}")
    return temp_path


# Favorites

def _folder_choices(username: str, category: str) -> List[Tuple[str, str]]:
    folders = favorites.list_folders(username, FavoriteCategory(category))
    return [("Root", ROOT_FOLDER)] + [(folder.name, folder.id) for folder in folders]


def _favorites_gallery(username: str, category: str, folder_id: str) -> list:
    try:
        images = favorites.list_images(username, FavoriteCategory(category), folder_id or ROOT_FOLDER)
    except KeyError:
        return []
    return [(_display_image(image.image), image.prompt[:80]) for image in images]


def get_favorites_gallery(category: str, folder_id: str, request: gr.Request = None) -> list:
    return _favorites_gallery(current_user(request), category, folder_id)


def add_selected_to_favorites(index: int, category: str, folder_id: str, request: gr.Request = None):
    username = current_user(request)
    result = _selected_result(get_session(username), index)
    if result is None:
        return "Select an image first", _favorites_gallery(username, category, folder_id)
    try:
        favorites.add(username, result, FavoriteCategory(category), folder_id or ROOT_FOLDER)
    except (ValueError, KeyError) as e:
        return f"❌ {e}", _favorites_gallery(username, category, folder_id)
    return "⭐ Added to favorites", _favorites_gallery(username, category, folder_id)


def on_favorite_select(category: str, folder_id: str, evt: gr.SelectData, request: gr.Request = None) -> str:
    """Id of the clicked favorite, or an empty string."""
    try:
        images = favorites.list_images(
            current_user(request), FavoriteCategory(category), folder_id or ROOT_FOLDER
        )
    except KeyError:
        return ""
    return images[evt.index].id if 0 <= evt.index < len(images) else ""


def remove_favorite(image_id: str, category: str, folder_id: str, request: gr.Request = None):
    """Remove the selected image from every folder of the user."""
    username = current_user(request)
    if not image_id:
        return "Select a favorite first", _favorites_gallery(username, category, folder_id), ""
    favorites.remove(username, image_id)
    return "🗑️ Removed from favorites", _favorites_gallery(username, category, folder_id), ""


def create_favorites_folder(category: str, name: str, request: gr.Request = None):
    username = current_user(request)
    try:
        folder = favorites.create_folder(username, FavoriteCategory(category), name)
    except ValueError as e:
        return gr.update(), f"❌ {e}"
    return gr.update(choices=_folder_choices(username, category), value=folder.id), f"📁 Created {folder.name}"


def rename_favorites_folder(category: str, folder_id: str, name: str, request: gr.Request = None):
    username = current_user(request)
    if not folder_id or folder_id == ROOT_FOLDER:
        return gr.update(), "Select a folder first"
    try:
        favorites.rename_folder(username, FavoriteCategory(category), folder_id, name)
    except (ValueError, KeyError) as e:
        return gr.update(), f"❌ {e}"
    return gr.update(choices=_folder_choices(username, category), value=folder_id), "✏️ Folder renamed"


def delete_favorites_folder(category: str, folder_id: str, request: gr.Request = None):
    username = current_user(request)
    if not folder_id or folder_id == ROOT_FOLDER:
        return gr.update(), "Select a folder first", _favorites_gallery(username, category, folder_id)
    favorites.delete_folder(username, FavoriteCategory(category), folder_id)
    return (
        gr.update(choices=_folder_choices(username, category), value=ROOT_FOLDER),
        "🗑️ Folder deleted",
        _favorites_gallery(username, category, ROOT_FOLDER),
    )


def change_favorites_category(category: str, request: gr.Request = None):
    username = current_user(request)
    return (
        gr.update(choices=_folder_choices(username, category), value=ROOT_FOLDER),
        _favorites_gallery(username, category, ROOT_FOLDER),
    )


# Account

def save_account_settings(payment_mode: str, api_key: str, request: gr.Request = None) -> str:
    username = current_user(request)
    ledger.set_payment_mode(username, PaymentMode(payment_mode))
    if api_key.strip():
        ledger.set_api_key(username, api_key)
    return get_account_summary(username)


def redeem_promo(code: str, request: gr.Request = None) -> Tuple[str, str]:
    username = current_user(request)
    try:
        balance = ledger.redeem_promo_code(username, code)
    except ValueError as e:
        return f"❌ {e}", get_account_summary(username)
    return f"✅ Credits added. New balance: {balance}", get_account_summary(username)


# Administration

USER_TABLE_HEADERS = ["Username", "Credits", "Payment", "Can log in"]
PROMO_TABLE_HEADERS = ["Code", "Credits", "Times used"]


def _check_admin(request: Optional[gr.Request]) -> Optional[str]:
    """Error message for non-administrators, None otherwise."""
    username = current_user(request)
    if is_admin(username):
        return None
    logger.warning(f"{username} tried to use an administrator action")
    return "❌ Administrator access required"


def _user_rows() -> List[list]:
    return [
        [account.username, account.credits, account.payment_mode.value, account.can_log_in]
        for account in ledger.list_users()
        if not (settings.auth_enabled and is_admin(account.username))
    ]


def _promo_rows() -> List[list]:
    return [[promo.code, promo.credits, len(promo.used_by)] for promo in ledger.list_promo_codes()]


def admin_tables(request: gr.Request = None) -> Tuple[List[list], List[list]]:
    if _check_admin(request):
        return [], []
    return _user_rows(), _promo_rows()


def admin_create_user(new_username: str, credits: float, request: gr.Request = None) -> Tuple[str, List[list]]:
    """Create a user with a generated password, shown once."""
    error = _check_admin(request)
    if error:
        return error, []

    password = generate_secret(PASSWORD_LENGTH)
    try:
        account = ledger.create_user(new_username, credits=int(credits or 0), password=password)
    except (ValueError, ValidationError) as e:
        return f"❌ {e}", _user_rows()
    return f"✅ Created **{account.username}** with password `{password}`", _user_rows()


def admin_update_user(
    target: str,
    credits: Optional[float],
    password: str,
    request: gr.Request = None
) -> Tuple[str, List[list]]:
    """Set a user's balance and, if given, a new password."""
    error = _check_admin(request)
    if error:
        return error, []

    try:
        if credits is not None:
            ledger.set_credits(target, int(credits))
        if password and password.strip():
            ledger.set_password(target, password)
    except (ValueError, KeyError) as e:
        return f"❌ {e}", _user_rows()
    return f"✅ Updated {target}", _user_rows()


def admin_delete_user(target: str, request: gr.Request = None) -> Tuple[str, List[list]]:
    error = _check_admin(request)
    if error:
        return error, []

    protected = {settings.default_username.lower(), settings.admin_username.lower()}
    if target.strip().lower() in protected:
        return f"❌ {target} cannot be deleted", _user_rows()
    if not ledger.delete_user(target):
        return f"❌ Unknown user: {target}", _user_rows()

    favorites.forget_user(target)
    sessions.pop(target.strip().lower(), None)
    return f"🗑️ Deleted {target}", _user_rows()


def admin_create_promo(credits: float, request: gr.Request = None) -> Tuple[str, List[list]]:
    error = _check_admin(request)
    if error:
        return error, []

    try:
        promo = ledger.create_promo_code(int(credits or 0))
    except ValueError as e:
        return f"❌ {e}", _promo_rows()
    return f"🎁 Created `{promo.code}` worth {promo.credits} credit(s)", _promo_rows()


def admin_delete_promo(code: str, request: gr.Request = None) -> Tuple[str, List[list]]:
    error = _check_admin(request)
    if error:
        return error, []

    if not ledger.delete_promo_code(code):
        return "❌ Promo code not found", _promo_rows()
    return "🗑️ Promo code deleted", _promo_rows()


def admin_user_favorites(target: str, category: str, request: gr.Request = None) -> Tuple[str, list]:
    """All favorites of a user in one category, captioned with their folder."""
    error = _check_admin(request)
    if error:
        return error, []
    if ledger.get_user(target) is None:
        return f"❌ Unknown user: {target}", []

    category_enum = FavoriteCategory(category)
    items = [
        (_display_image(image.image), f"Root: {image.prompt[:60]}")
        for image in favorites.list_images(target, category_enum)
    ]
    for folder in favorites.list_folders(target, category_enum):
        items.extend(
            (_display_image(image.image), f"{folder.name}: {image.prompt[:60]}")
            for image in favorites.list_images(target, category_enum, folder.id)
        )
    return f"{len(items)} favorite(s) of {target}", items


def update_provider_limits(provider_id: str):
    """Adjust count and aspect ratio controls to the provider's capabilities."""
    spec = backend_factory.get_spec(provider_id)
    ratios = [ratio.value for ratio in AspectRatio if ratio in spec.capabilities.supported_aspect_ratios]
    return (
        gr.update(maximum=spec.capabilities.max_batch_size),
        gr.update(choices=ratios, value=ratios[0]),
    )


def load_user_view(category: str, request: gr.Request = None):
    """Fill the per-user parts of the page after login."""
    username = current_user(request)
    return (
        get_account_summary(username),
        gr.update(choices=_folder_choices(username, category), value=ROOT_FOLDER),
        gr.update(visible=is_admin(username)),
    )


def create_ui():
    """Create the Gradio interface.

    Returns:
        Gradio Blocks interface
    """
    provider_choices = [
        (backend_factory.get_spec(pid).display_name, pid)
        for pid in backend_factory.get_supported_providers()
    ]
    default_spec = backend_factory.get_spec(settings.default_provider) or backend_factory.get_spec(
        provider_choices[0][1]
    )
    default_ratios = [
        ratio.value for ratio in AspectRatio
        if ratio in default_spec.capabilities.supported_aspect_ratios
    ]
    portrait_ratios = [
        ratio.value for ratio in AspectRatio
        if ratio in backend_factory.get_spec(GEMINI_IMAGE_MODEL).capabilities.supported_aspect_ratios
    ]

    with gr.Blocks(title="Setka Studio") as demo:
        gr.Markdown(
            """
            # 📸 Setka Studio

            Generate photos, portrait variations, edits and avatars.
            Images are generated one at a time; press **Stop** to end a batch early.
            """
        )

        with gr.Row():
            account_display = gr.Markdown()
            if settings.auth_enabled:
                gr.Button("🚪 Logout", link="/logout", size="sm", scale=0)
        selected_index = gr.State(value=-1)

        with gr.Row():
            with gr.Column(scale=2):
                output_gallery = gr.Gallery(label="Results", columns=4, height="auto")
            with gr.Column(scale=1):
                status_display = gr.Textbox(label="Status", lines=10, interactive=False)
                stop_btn = gr.Button("⏹️ Stop", variant="stop")
                selected_info = gr.Markdown("Select an image to see details")
                regenerate_btn = gr.Button("🔄 Regenerate Selected", variant="secondary")
                with gr.Row():
                    format_selector = gr.Radio(
                        choices=["PNG", "JPEG", "WebP"],
                        value="PNG",
                        label="Download Format"
                    )
                download_btn = gr.DownloadButton(label="💾 Download Selected", variant="secondary")

        batch_outputs = [output_gallery, status_display, account_display]

        with gr.Tabs():
            with gr.Tab("🎨 Photo"):
                with gr.Row():
                    with gr.Column(scale=1):
                        prompt_input = gr.Textbox(
                            label="Prompt",
                            placeholder="Describe the photo you want to generate...",
                            lines=3
                        )
                        provider_selector = gr.Dropdown(
                            choices=provider_choices,
                            value=default_spec.provider_id,
                            label="Model"
                        )
                        with gr.Row():
                            aspect_selector = gr.Radio(
                                choices=default_ratios,
                                value=default_ratios[0],
                                label="Aspect Ratio"
                            )
                            count_slider = gr.Slider(
                                minimum=1,
                                maximum=default_spec.capabilities.max_batch_size,
                                value=1,
                                step=1,
                                label="Number of Images"
                            )

                        with gr.Accordion("🖼️ Image Input", open=False):
                            reference_input = gr.Image(label="Image to vary", type="pil")
                            strength_slider = gr.Slider(
                                minimum=1, maximum=10, value=5, step=1,
                                label="Variation Strength",
                                info="1 = minimal changes, 10 = free reinterpretation"
                            )
                            style_image_input = gr.Image(label="Style reference (Upload style)", type="pil")

                    with gr.Column(scale=1):
                        with gr.Accordion("🎭 Style", open=False):
                            style_enabled = gr.Checkbox(label="Use style", value=False)
                            style_selector = gr.Dropdown(
                                choices=_choices(PhotoStyle), value=PhotoStyle.SUPER_REALISM.value, label="Style"
                            )
                            custom_style_input = gr.Textbox(label="Custom style")

                        with gr.Accordion("📷 Camera", open=False):
                            camera_enabled = gr.Checkbox(label="Use camera settings", value=False)
                            aperture_slider = gr.Slider(minimum=1.4, maximum=22, value=5.6, step=0.1, label="Aperture (f/)")
                            shutter_selector = gr.Dropdown(choices=CAMERA_SHUTTER_SPEEDS, value="1/125s", label="Shutter Speed")
                            iso_selector = gr.Dropdown(choices=CAMERA_ISO_VALUES, value="100", label="ISO")
                            focal_slider = gr.Slider(minimum=14, maximum=200, value=50, step=1, label="Focal Length (mm)")

                        with gr.Accordion("💡 Lighting", open=False):
                            lighting_enabled = gr.Checkbox(label="Use lighting", value=False)
                            lighting_selector = gr.Dropdown(
                                choices=_choices(LightingStyle), value=LightingStyle.CINEMATIC.value, label="Lighting"
                            )
                            custom_lighting_input = gr.Textbox(label="Custom lighting")

                        with gr.Accordion("✨ Effects", open=False):
                            effects_enabled = gr.Checkbox(label="Use effects", value=False)
                            grain_selector = gr.Dropdown(choices=_choices(FilmGrain), value=FilmGrain.NONE.value, label="Film Grain")
                            blur_selector = gr.Dropdown(choices=_choices(Blur), value=Blur.NONE.value, label="Blur")
                            vignette_selector = gr.Dropdown(choices=_choices(Vignette), value=Vignette.NONE.value, label="Vignette")

                        with gr.Accordion("⚙️ Extra", open=False):
                            aspect_directive = gr.Checkbox(label="Describe aspect ratio in the prompt", value=False)
                            negative_enabled = gr.Checkbox(label="Use negative prompt", value=False)
                            negative_input = gr.Textbox(label="Negative prompt", placeholder="blurry, low quality")

                photo_btn = gr.Button("🎨 Generate", variant="primary", size="lg")

            with gr.Tab("🧑 Portrait"):
                with gr.Row():
                    with gr.Column(scale=1):
                        portrait_photo = gr.Image(label="Your photo", type="pil")
                        output_mode_selector = gr.Radio(
                            choices=_choices(OutputMode), value=OutputMode.ANGLES.value, label="Variations"
                        )
                        portrait_aspect = gr.Radio(choices=portrait_ratios, value=portrait_ratios[0], label="Aspect Ratio")
                    with gr.Column(scale=1):
                        shot_selector = gr.Dropdown(choices=_choices(ShotType), value=ShotType.CLOSE_UP.value, label="Shot Type")
                        clothing_selector = gr.Dropdown(
                            choices=_choices(ClothingOption), value=ClothingOption.CLASSIC.value, label="Clothing"
                        )
                        custom_clothing_input = gr.Textbox(label="Custom clothing")
                        background_selector = gr.Dropdown(
                            choices=_choices(BackgroundOption), value=BackgroundOption.STUDIO_GRAY.value, label="Background"
                        )
                        custom_background_input = gr.Textbox(label="Custom background")
                portrait_btn = gr.Button("🧑 Generate Portraits", variant="primary", size="lg")

            with gr.Tab("🖌️ Edit"):
                with gr.Row():
                    with gr.Column(scale=1):
                        edit_photo_input = gr.Image(label="Photo to edit", type="pil")
                        edit_style_enabled = gr.Checkbox(label="Apply style", value=False)
                        edit_style_selector = gr.Dropdown(
                            choices=_choices(EditStyle), value=EditStyle.PHOTO_REALISM.value, label="Style"
                        )
                        edit_custom_style = gr.Textbox(label="Custom style")
                    with gr.Column(scale=1):
                        adjustments_enabled = gr.Checkbox(label="Apply adjustments", value=False)
                        grain_slider = gr.Slider(0, 100, value=0, step=1, label="Grain (%)")
                        edit_blur_slider = gr.Slider(0, 100, value=0, step=1, label="Blur (%)")
                        contrast_slider = gr.Slider(0, 200, value=100, step=1, label="Contrast (%)")
                        brightness_slider = gr.Slider(-100, 100, value=0, step=1, label="Brightness (%)")
                        saturation_slider = gr.Slider(0, 200, value=100, step=1, label="Saturation (%)")
                        sharpness_slider = gr.Slider(0, 100, value=0, step=1, label="Sharpness (%)")
                        edit_vignette_slider = gr.Slider(0, 100, value=0, step=1, label="Vignette (%)")
                edit_btn = gr.Button("🖌️ Edit Photo", variant="primary", size="lg")

            with gr.Tab("👤 Avatar"):
                with gr.Row():
                    with gr.Column(scale=1):
                        gender_selector = gr.Radio(choices=_choices(Gender), value=Gender.MAN.value, label="Gender")
                        face_shot_selector = gr.Dropdown(
                            choices=_choices(FaceShotType), value=FaceShotType.CLOSE_UP.value, label="Shot Type"
                        )
                        age_input = gr.Textbox(label="Age range", value="random")
                        ethnicity_input = gr.Textbox(label="Ethnicity", value="random")
                        coherence_checkbox = gr.Checkbox(label="Typical features for the ethnicity", value=False)
                    with gr.Column(scale=1):
                        eye_color_input = gr.Textbox(label="Eye color", value="random")
                        hair_color_input = gr.Textbox(label="Hair color", value="random")
                        hair_length_input = gr.Textbox(label="Hair length", value="random")
                        facial_hair_input = gr.Textbox(label="Facial hair (men)", value="random")
                        expression_input = gr.Textbox(label="Expression", value="random")
                        avatar_count = gr.Slider(minimum=1, maximum=4, value=1, step=1, label="Number of Faces")
                avatar_btn = gr.Button("👤 Create Faces", variant="primary", size="lg")

            with gr.Tab("⭐ Favorites"):
                with gr.Row():
                    favorites_category = gr.Radio(
                        choices=_choices(FavoriteCategory), value=FavoriteCategory.PHOTOS.value, label="Category"
                    )
                    favorites_folder = gr.Dropdown(
                        choices=[("Root", ROOT_FOLDER)], value=ROOT_FOLDER, label="Folder"
                    )
                with gr.Row():
                    add_favorite_btn = gr.Button("⭐ Add Selected Result", variant="primary")
                    remove_favorite_btn = gr.Button("🗑️ Remove Selected Favorite")
                with gr.Row():
                    folder_name_input = gr.Textbox(label="Folder name")
                    create_folder_btn = gr.Button("📁 Create Folder")
                    rename_folder_btn = gr.Button("✏️ Rename Folder")
                    delete_folder_btn = gr.Button("🗑️ Delete Folder", variant="stop")
                favorites_status = gr.Markdown()
                selected_favorite = gr.State(value="")
                favorites_gallery = gr.Gallery(label="Favorites", columns=4, height="auto")

            with gr.Tab("💳 Account"):
                payment_selector = gr.Radio(
                    choices=[("Credits", PaymentMode.CREDITS.value), ("Own API key", PaymentMode.API_KEY.value)],
                    value=PaymentMode.CREDITS.value,
                    label="Pay with"
                )
                api_key_input = gr.Textbox(label="Gemini API key", type="password")
                save_account_btn = gr.Button("💾 Save")
                promo_input = gr.Textbox(label="Promo code")
                redeem_btn = gr.Button("🎁 Redeem")
                promo_status = gr.Markdown()

            with gr.Tab("🛠️ Admin"):
                with gr.Column(visible=not settings.auth_enabled) as admin_panel:
                    admin_status = gr.Markdown()
                    refresh_admin_btn = gr.Button("🔄 Refresh")

                    gr.Markdown("### Users")
                    users_table = gr.Dataframe(headers=USER_TABLE_HEADERS, interactive=False)
                    with gr.Row():
                        admin_username_input = gr.Textbox(label="Username")
                        admin_credits_input = gr.Number(label="Credits", value=0, precision=0, minimum=0)
                        admin_password_input = gr.Textbox(label="New password (optional)", type="password")
                    with gr.Row():
                        create_user_btn = gr.Button("➕ Create User", variant="primary")
                        update_user_btn = gr.Button("💾 Update User")
                        delete_user_btn = gr.Button("🗑️ Delete User", variant="stop")

                    gr.Markdown("### Promo codes")
                    promo_table = gr.Dataframe(headers=PROMO_TABLE_HEADERS, interactive=False)
                    with gr.Row():
                        promo_credits_input = gr.Number(label="Credits per code", value=10, precision=0, minimum=1)
                        create_promo_btn = gr.Button("🎁 Create Code", variant="primary")
                        promo_code_input = gr.Textbox(label="Code to delete")
                        delete_promo_btn = gr.Button("🗑️ Delete Code", variant="stop")

                    gr.Markdown("### User favorites")
                    with gr.Row():
                        admin_favorites_category = gr.Radio(
                            choices=_choices(FavoriteCategory), value=FavoriteCategory.PHOTOS.value, label="Category"
                        )
                        view_favorites_btn = gr.Button("⭐ Show Favorites of Username")
                    admin_favorites_gallery = gr.Gallery(label="User favorites", columns=4, height="auto")

        # Event handlers
        photo_btn.click(
            fn=generate_photos,
            inputs=[
                prompt_input, provider_selector, aspect_selector, count_slider,
                reference_input, strength_slider, style_image_input,
                style_enabled, style_selector, custom_style_input,
                camera_enabled, aperture_slider, shutter_selector, iso_selector, focal_slider,
                lighting_enabled, lighting_selector, custom_lighting_input,
                effects_enabled, grain_selector, blur_selector, vignette_selector,
                aspect_directive, negative_enabled, negative_input,
            ],
            outputs=batch_outputs
        )

        portrait_btn.click(
            fn=generate_portraits,
            inputs=[
                portrait_photo, shot_selector, clothing_selector, custom_clothing_input,
                background_selector, custom_background_input, portrait_aspect, output_mode_selector,
            ],
            outputs=batch_outputs
        )

        edit_btn.click(
            fn=edit_photo,
            inputs=[
                edit_photo_input, adjustments_enabled, grain_slider, edit_blur_slider,
                contrast_slider, brightness_slider, saturation_slider, sharpness_slider,
                edit_vignette_slider, edit_style_enabled, edit_style_selector, edit_custom_style,
            ],
            outputs=batch_outputs
        )

        avatar_btn.click(
            fn=create_avatars,
            inputs=[
                gender_selector, face_shot_selector, age_input, ethnicity_input, coherence_checkbox,
                eye_color_input, hair_color_input, hair_length_input, facial_hair_input,
                expression_input, avatar_count,
            ],
            outputs=batch_outputs
        )

        stop_btn.click(fn=stop_generation, outputs=[status_display])

        provider_selector.change(
            fn=update_provider_limits,
            inputs=[provider_selector],
            outputs=[count_slider, aspect_selector]
        )

        output_gallery.select(fn=on_gallery_select, outputs=[selected_index, selected_info]).then(
            fn=download_selected,
            inputs=[selected_index, format_selector],
            outputs=download_btn
        )
        format_selector.change(
            fn=download_selected,
            inputs=[selected_index, format_selector],
            outputs=download_btn
        )
        regenerate_btn.click(fn=regenerate_selected, inputs=[selected_index], outputs=batch_outputs)

        favorites_category.change(
            fn=change_favorites_category,
            inputs=[favorites_category],
            outputs=[favorites_folder, favorites_gallery]
        )
        favorites_folder.change(
            fn=get_favorites_gallery,
            inputs=[favorites_category, favorites_folder],
            outputs=[favorites_gallery]
        )
        add_favorite_btn.click(
            fn=add_selected_to_favorites,
            inputs=[selected_index, favorites_category, favorites_folder],
            outputs=[favorites_status, favorites_gallery]
        )
        create_folder_btn.click(
            fn=create_favorites_folder,
            inputs=[favorites_category, folder_name_input],
            outputs=[favorites_folder, favorites_status]
        )

        rename_folder_btn.click(
            fn=rename_favorites_folder,
            inputs=[favorites_category, favorites_folder, folder_name_input],
            outputs=[favorites_folder, favorites_status]
        )
        delete_folder_btn.click(
            fn=delete_favorites_folder,
            inputs=[favorites_category, favorites_folder],
            outputs=[favorites_folder, favorites_status, favorites_gallery]
        )
        favorites_gallery.select(
            fn=on_favorite_select,
            inputs=[favorites_category, favorites_folder],
            outputs=[selected_favorite]
        )
        remove_favorite_btn.click(
            fn=remove_favorite,
            inputs=[selected_favorite, favorites_category, favorites_folder],
            outputs=[favorites_status, favorites_gallery, selected_favorite]
        )

        save_account_btn.click(
            fn=save_account_settings,
            inputs=[payment_selector, api_key_input],
            outputs=[account_display]
        )
        redeem_btn.click(fn=redeem_promo, inputs=[promo_input], outputs=[promo_status, account_display])

        refresh_admin_btn.click(fn=admin_tables, outputs=[users_table, promo_table])
        create_user_btn.click(
            fn=admin_create_user,
            inputs=[admin_username_input, admin_credits_input],
            outputs=[admin_status, users_table]
        )
        update_user_btn.click(
            fn=admin_update_user,
            inputs=[admin_username_input, admin_credits_input, admin_password_input],
            outputs=[admin_status, users_table]
        )
        delete_user_btn.click(
            fn=admin_delete_user,
            inputs=[admin_username_input],
            outputs=[admin_status, users_table]
        )
        create_promo_btn.click(
            fn=admin_create_promo,
            inputs=[promo_credits_input],
            outputs=[admin_status, promo_table]
        )
        delete_promo_btn.click(
            fn=admin_delete_promo,
            inputs=[promo_code_input],
            outputs=[admin_status, promo_table]
        )
        view_favorites_btn.click(
            fn=admin_user_favorites,
            inputs=[admin_username_input, admin_favorites_category],
            outputs=[admin_status, admin_favorites_gallery]
        )

        demo.load(
            fn=load_user_view,
            inputs=[favorites_category],
            outputs=[account_display, favorites_folder, admin_panel]
        ).then(fn=admin_tables, outputs=[users_table, promo_table])

    return demo


def build_app() -> FastAPI:
    """FastAPI app serving the relay with the Gradio UI mounted at the root.

    Login is required when an administrator password is configured.
    """
    app = create_app()
    auth = authenticate if settings.auth_enabled else None
    return gr.mount_gradio_app(app, create_ui(), path="/", auth=auth)


if __name__ == "__main__":
    try:
        settings.validate_required_keys()
    except ValueError as e:
        logger.warning(f"Configuration incomplete: {e}")

    logger.info("Launching Setka Studio...")
    uvicorn.run(build_app(), host=settings.server_name, port=settings.server_port)
