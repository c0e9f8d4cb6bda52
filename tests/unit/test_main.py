"""Unit tests for the Gradio handlers."""

import io
import pytest
from unittest.mock import Mock, patch
from PIL import Image

from setka_studio.core.exceptions import PreconditionError, PreconditionReason
from setka_studio.core.models import AspectRatio, BatchState, GenerationResult, PaymentMode
from setka_studio.utils.favorites_manager import ROOT_FOLDER, FavoriteCategory
from setka_studio.utils.image_utils import to_data_url


@pytest.fixture
def main_module():
    """Import the app module and reset its per-session state."""
    import app.main as main

    main.sessions.clear()
    yield main
    main.sessions.clear()


def fake_batch(results, image):
    """Batch stand-in that marks every result successful when run."""
    batch = Mock()
    batch.results = results
    batch.state = BatchState.IDLE

    def run():
        for result in results:
            result.mark_success(image)
            yield result
        batch.state = BatchState.COMPLETED

    batch.run.side_effect = run
    return batch


def photo_args(prompt="A fox", reference_image=None, style_image=None, **overrides):
    """Positional arguments of generate_photos with every section switched off."""
    values = dict(
        provider_id="gemini-2.5-flash-image", aspect_ratio="1:1", count=1,
        variation_strength=5,
        style_enabled=False, style="super_realism", custom_style="",
        camera_enabled=False, aperture=5.6, shutter_speed="1/125s", iso="100", focal_length=50,
        lighting_enabled=False, lighting="cinematic", custom_lighting="",
        effects_enabled=False, film_grain="no preference", blur="no preference", vignette="no preference",
        aspect_directive_enabled=False, negative_prompt_enabled=False, negative_prompt="",
    )
    values.update(overrides)
    return (
        prompt, values["provider_id"], values["aspect_ratio"], values["count"],
        reference_image, values["variation_strength"], style_image,
        values["style_enabled"], values["style"], values["custom_style"],
        values["camera_enabled"], values["aperture"], values["shutter_speed"], values["iso"],
        values["focal_length"],
        values["lighting_enabled"], values["lighting"], values["custom_lighting"],
        values["effects_enabled"], values["film_grain"], values["blur"], values["vignette"],
        values["aspect_directive_enabled"], values["negative_prompt_enabled"], values["negative_prompt"],
    )


def success_result(image_bytes, prompt="A fox"):
    result = GenerationResult(prompt_used=prompt, aspect_ratio=AspectRatio.SQUARE, provider_id="dall-e")
    result.mark_success(to_data_url(image_bytes))
    return result


class TestHandlers:
    """Tests for UI handlers without launching the interface."""

    def test_stop_without_batch(self, main_module):
        assert main_module.stop_generation() == "Nothing is running"

    def test_stop_cancels_active_batch(self, main_module):
        session = main_module.get_session("demo")
        session.active_batch = Mock()

        main_module.stop_generation()

        session.active_batch.cancel.assert_called_once()

    def test_stop_only_affects_own_session(self, main_module):
        session = main_module.get_session("demo")
        session.active_batch = Mock()

        message = main_module.stop_generation(Mock(username="bob"))

        assert message == "Nothing is running"
        session.active_batch.cancel.assert_not_called()

    def test_generate_photos_requires_prompt(self, main_module):
        updates = list(main_module.generate_photos(*photo_args(prompt="  ")))

        assert len(updates) == 1
        assert "Please enter a prompt" in updates[0][1]

    @patch('app.main.create_orchestrator')
    def test_precondition_error_reported(self, mock_create, main_module):
        mock_create.return_value.submit_batch.side_effect = PreconditionError(
            PreconditionReason.INSUFFICIENT_BALANCE, "Not enough credits"
        )

        updates = list(main_module.create_avatars(
            "man", "close_up", "random", "random", False,
            "random", "random", "random", "random", "random", 2,
        ))

        assert updates[-1][1] == "❌ Not enough credits"
        assert main_module.get_session("demo").active_batch is None

    @patch('app.main.create_orchestrator')
    def test_batch_streams_to_gallery(self, mock_create, main_module, sample_image_bytes):
        results = [
            GenerationResult(prompt_used="A fox", aspect_ratio=AspectRatio.SQUARE, provider_id="dall-e")
            for _ in range(2)
        ]
        mock_create.return_value.submit_batch.return_value = fake_batch(
            results, to_data_url(sample_image_bytes)
        )

        updates = list(main_module.create_avatars(
            "woman", "waist_up", "random", "random", False,
            "random", "random", "random", "random", "random", 2,
        ))

        requests = mock_create.return_value.submit_batch.call_args.args[0]
        assert len(requests) == 2
        assert "of a woman" in requests[0].prompt
        gallery, status, account = updates[-1]
        session = main_module.get_session("demo")
        assert len(gallery) == 2
        assert "Batch: completed" in status
        assert session.gallery_result_ids == [result.id for result in results]
        assert session.active_batch is None

    def test_account_settings(self, main_module):
        summary = main_module.save_account_settings(PaymentMode.API_KEY.value, "my-own-key")

        assert "own API key" in summary
        assert "API key: set" in summary
        main_module.save_account_settings(PaymentMode.CREDITS.value, "")
        assert main_module.current_context("demo").payment_mode == PaymentMode.CREDITS

    def test_redeem_unknown_promo(self, main_module):
        message, _ = main_module.redeem_promo("NOT-A-CODE")

        assert message == "❌ Promo code not found"

    def test_redeem_promo(self, main_module):
        promo = main_module.ledger.create_promo_code(3)
        before = main_module.ledger.balance("demo")

        message, _ = main_module.redeem_promo(promo.code)

        assert message == f"✅ Credits added. New balance: {before + 3}"

    def test_download_without_selection(self, main_module):
        assert main_module.download_selected(-1, "PNG") is None


class TestPhotoRequests:
    """Tests for how the photo tab turns selections into requests."""

    @patch('app.main.create_orchestrator')
    def test_toggles_kept_for_base_image_without_text(self, mock_create, main_module, sample_fake_image):
        mock_create.return_value.submit_batch.side_effect = PreconditionError(
            PreconditionReason.INSUFFICIENT_BALANCE, "stop here"
        )

        list(main_module.generate_photos(*photo_args(
            prompt="",
            reference_image=sample_fake_image,
            style_enabled=True, style="anime",
            lighting_enabled=True, lighting="neon",
            negative_prompt_enabled=True, negative_prompt="blurry",
        )))

        request = mock_create.return_value.submit_batch.call_args.args[0][0]
        assert "anime style" in request.prompt
        assert "neon lighting" in request.prompt
        assert request.prompt.endswith("Negative prompt: blurry.")
        assert request.has_image_input

    @patch('app.main.create_orchestrator')
    def test_base_image_without_selections_sends_empty_prompt(self, mock_create, main_module, sample_fake_image):
        mock_create.return_value.submit_batch.side_effect = PreconditionError(
            PreconditionReason.INSUFFICIENT_BALANCE, "stop here"
        )

        list(main_module.generate_photos(*photo_args(prompt="", reference_image=sample_fake_image)))

        request = mock_create.return_value.submit_batch.call_args.args[0][0]
        assert request.prompt == ""
        assert request.variation_strength == 5

    @patch('app.main.create_orchestrator')
    def test_style_image_ignored_unless_upload_style(self, mock_create, main_module, sample_fake_image):
        mock_create.return_value.submit_batch.side_effect = PreconditionError(
            PreconditionReason.INSUFFICIENT_BALANCE, "stop here"
        )

        list(main_module.generate_photos(*photo_args(style_image=sample_fake_image)))
        list(main_module.generate_photos(*photo_args(
            style_image=sample_fake_image, style_enabled=True, style="anime"
        )))

        for call in mock_create.return_value.submit_batch.call_args_list:
            assert call.args[0][0].style_image is None

    @patch('app.main.create_orchestrator')
    def test_uploaded_style_cropped_to_aspect_ratio(self, mock_create, main_module):
        mock_create.return_value.submit_batch.side_effect = PreconditionError(
            PreconditionReason.INSUFFICIENT_BALANCE, "stop here"
        )

        list(main_module.generate_photos(*photo_args(
            style_image=Image.new("RGB", (800, 400), "red"),
            style_enabled=True, style="upload",
        )))

        style_image = mock_create.return_value.submit_batch.call_args.args[0][0].style_image
        assert style_image.mime_type == "image/png"
        with Image.open(io.BytesIO(style_image.data)) as image:
            assert image.size == (400, 400)


class TestInvalidInput:
    """Tests for validation errors on every generation tab."""

    @patch('app.main.create_orchestrator')
    def test_portrait_prompt_too_long(self, mock_create, main_module, sample_fake_image):
        updates = list(main_module.generate_portraits(
            sample_fake_image, "close_up", "custom", "silk " * 1000,
            "studio_gray", "", "1:1", "angles",
        ))

        assert len(updates) == 1
        assert updates[0][1].startswith("❌ Invalid input")
        mock_create.assert_not_called()

    @patch('app.main.create_orchestrator')
    def test_avatar_prompt_too_long(self, mock_create, main_module):
        updates = list(main_module.create_avatars(
            "man", "close_up", "random", "random", False,
            "random", "random", "random", "random", "smiling " * 600, 1,
        ))

        assert updates[-1][1].startswith("❌ Invalid input")
        mock_create.assert_not_called()

    @patch('app.main.create_orchestrator')
    def test_unknown_edit_style(self, mock_create, main_module, sample_fake_image):
        updates = list(main_module.edit_photo(
            sample_fake_image, False, 0, 0, 100, 0, 100, 0, 0, True, "not-a-style", "",
        ))

        assert updates[-1][1].startswith("❌ Invalid input")
        mock_create.assert_not_called()


class TestFavoritesHandlers:
    """Tests for the favorites tab."""

    def select_result(self, main_module, image_bytes):
        session = main_module.get_session("demo")
        result = success_result(image_bytes)
        session.results[:] = [result]
        main_module._gallery(session)
        return result

    def test_add_and_remove(self, main_module, sample_image_bytes):
        result = self.select_result(main_module, sample_image_bytes)

        status, gallery = main_module.add_selected_to_favorites(0, "photos", ROOT_FOLDER)
        assert status == "⭐ Added to favorites"
        assert len(gallery) == 1

        status, gallery, selected = main_module.remove_favorite(result.id, "photos", ROOT_FOLDER)
        assert status == "🗑️ Removed from favorites"
        assert gallery == []
        assert selected == ""
        assert not main_module.favorites.is_favorite("demo", result.id)

    def test_remove_without_selection(self, main_module):
        status, _, _ = main_module.remove_favorite("", "photos", ROOT_FOLDER)

        assert status == "Select a favorite first"

    def test_rename_and_delete_folder(self, main_module):
        folder = main_module.favorites.create_folder("demo", FavoriteCategory.AVATARS, "Faces")

        _, status = main_module.rename_favorites_folder("avatars", folder.id, "People")
        assert status == "✏️ Folder renamed"
        assert main_module.favorites.list_folders("demo", FavoriteCategory.AVATARS)[0].name == "People"

        _, status, gallery = main_module.delete_favorites_folder("avatars", folder.id)
        assert status == "🗑️ Folder deleted"
        assert main_module.favorites.list_folders("demo", FavoriteCategory.AVATARS) == []

    def test_root_cannot_be_renamed_or_deleted(self, main_module):
        assert main_module.rename_favorites_folder("photos", ROOT_FOLDER, "x")[1] == "Select a folder first"
        assert main_module.delete_favorites_folder("photos", ROOT_FOLDER)[1] == "Select a folder first"


class TestAdministration:
    """Tests for the admin tab and login."""

    def test_create_user_with_generated_password(self, main_module):
        message, rows = main_module.admin_create_user("carol", 7)

        password = message.split("`")[1]
        assert "carol" in message
        assert main_module.authenticate("carol", password)
        assert not main_module.authenticate("carol", "wrong")
        assert ["carol", 7, "credits", True] in rows
        main_module.ledger.delete_user("carol")

    def test_update_user(self, main_module):
        main_module.ledger.create_user("dave", credits=1)

        message, rows = main_module.admin_update_user("dave", 40, "dave-pass")

        assert message == "✅ Updated dave"
        assert main_module.ledger.balance("dave") == 40
        assert main_module.authenticate("dave", "dave-pass")
        main_module.ledger.delete_user("dave")

    def test_delete_user_clears_favorites(self, main_module, sample_image_bytes):
        main_module.ledger.create_user("erin")
        main_module.favorites.add("erin", success_result(sample_image_bytes))

        message, rows = main_module.admin_delete_user("erin")

        assert message == "🗑️ Deleted erin"
        assert main_module.ledger.get_user("erin") is None
        assert main_module.favorites.list_images("erin") == []

    def test_demo_user_protected(self, main_module):
        message, _ = main_module.admin_delete_user("demo")

        assert "cannot be deleted" in message
        assert main_module.ledger.get_user("demo") is not None

    def test_promo_code_lifecycle(self, main_module):
        message, rows = main_module.admin_create_promo(5)
        code = message.split("`")[1]
        assert [code, 5, 0] in rows

        redeemed, _ = main_module.redeem_promo(code)
        assert redeemed.startswith("✅ Credits added")
        _, promos = main_module.admin_tables()
        assert [code, 5, 1] in promos

        message, rows = main_module.admin_delete_promo(code)
        assert message == "🗑️ Promo code deleted"
        assert all(row[0] != code for row in rows)

    def test_user_favorites_view(self, main_module, sample_image_bytes):
        main_module.ledger.create_user("frank")
        folder = main_module.favorites.create_folder("frank", FavoriteCategory.PHOTOS, "Best")
        main_module.favorites.add("frank", success_result(sample_image_bytes, "A cat"))
        main_module.favorites.add(
            "frank", success_result(sample_image_bytes, "A dog"), folder_id=folder.id
        )

        message, gallery = main_module.admin_user_favorites("frank", "photos")

        assert message == "2 favorite(s) of frank"
        assert [caption for _, caption in gallery] == ["Root: A cat", "Best: A dog"]
        main_module.admin_delete_user("frank")

    def test_non_admin_refused_when_login_enabled(self, main_module):
        with patch.object(main_module.settings, "admin_password", "admin-pass"):
            message, rows = main_module.admin_create_promo(5, Mock(username="bob"))
            assert message == "❌ Administrator access required"
            assert rows == []

            message, _ = main_module.admin_create_promo(5, Mock(username="Admin"))
            assert message.startswith("🎁 Created")

    def test_logged_in_user_has_own_account(self, main_module):
        main_module.ledger.create_user("gina", credits=3)

        summary = main_module.get_account_summary(main_module.current_user(Mock(username="gina")))

        assert "gina" in summary
        assert "3 credits" in summary
        main_module.ledger.delete_user("gina")
