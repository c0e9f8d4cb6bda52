"""Per-user favorites with folders, split into photo and avatar categories."""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Dict, List, Optional

from setka_studio.core.models import GenerationResult, GenerationStatus

logger = logging.getLogger(__name__)

ROOT_FOLDER = "root"


class FavoriteCategory(str, Enum):
    PHOTOS = "photos"
    AVATARS = "avatars"


@dataclass
class FavoriteImage:
    """A saved image and where it came from.

    Attributes:
        id: Id of the generation result
        image: Data URL or remote URL
        prompt: Prompt the image was generated with
        saved_at: When the image was added
    """
    id: str
    image: str
    prompt: str
    saved_at: datetime = field(default_factory=datetime.now)


@dataclass
class FavoritesFolder:
    id: str
    name: str
    images: List[str] = field(default_factory=list)


@dataclass
class CategoryFavorites:
    root: List[str] = field(default_factory=list)
    folders: List[FavoritesFolder] = field(default_factory=list)

    def find_folder(self, folder_id: str) -> Optional[FavoritesFolder]:
        return next((folder for folder in self.folders if folder.id == folder_id), None)


class FavoritesManager:
    """Keeps each user's favorite images.

    Images live in the root list of a category or in one of its folders.
    Only successful results can be saved.
    """

    def __init__(self):
        self._favorites: Dict[str, Dict[FavoriteCategory, CategoryFavorites]] = {}
        self._images: Dict[str, FavoriteImage] = {}
        self._lock = Lock()

    def _user(self, username: str) -> Dict[FavoriteCategory, CategoryFavorites]:
        key = username.strip().lower()
        if key not in self._favorites:
            self._favorites[key] = {category: CategoryFavorites() for category in FavoriteCategory}
        return self._favorites[key]

    def _prune(self) -> None:
        """Drop image records that no folder of any user references."""
        referenced = set()
        for categories in self._favorites.values():
            for favorites in categories.values():
                referenced.update(favorites.root)
                for folder in favorites.folders:
                    referenced.update(folder.images)
        for image_id in [image_id for image_id in self._images if image_id not in referenced]:
            del self._images[image_id]

    def _target(self, favorites: CategoryFavorites, folder_id: str) -> List[str]:
        if folder_id == ROOT_FOLDER:
            return favorites.root
        folder = favorites.find_folder(folder_id)
        if folder is None:
            raise KeyError(f"Unknown folder: {folder_id}")
        return folder.images

    def add(
        self,
        username: str,
        result: GenerationResult,
        category: FavoriteCategory = FavoriteCategory.PHOTOS,
        folder_id: str = ROOT_FOLDER
    ) -> FavoriteImage:
        """Save a successful result.

        Args:
            username: Owner of the favorites
            result: Result to save
            category: Photos or avatars
            folder_id: Target folder id, or ``root``

        Returns:
            The saved image record

        Raises:
            ValueError: If the result is not a success
            KeyError: If the folder does not exist
        """
        if result.status != GenerationStatus.SUCCESS or not result.image:
            raise ValueError("Only successfully generated images can be added to favorites")

        with self._lock:
            target = self._target(self._user(username)[category], folder_id)
            if result.id not in target:
                target.append(result.id)
            record = self._images.setdefault(
                result.id,
                FavoriteImage(id=result.id, image=result.image, prompt=result.prompt_used),
            )

        logger.info(f"Added {result.id} to {category.value}/{folder_id} for {username}")
        return record

    def remove(self, username: str, image_id: str) -> bool:
        """Remove an image from the root and every folder of both categories.

        Returns:
            True if the image was found anywhere
        """
        removed = False
        with self._lock:
            for favorites in self._user(username).values():
                for images in [favorites.root] + [folder.images for folder in favorites.folders]:
                    if image_id in images:
                        images.remove(image_id)
                        removed = True
            if removed:
                self._prune()
        return removed

    def is_favorite(self, username: str, image_id: str) -> bool:
        with self._lock:
            for favorites in self._user(username).values():
                if image_id in favorites.root:
                    return True
                if any(image_id in folder.images for folder in favorites.folders):
                    return True
        return False

    def create_folder(
        self,
        username: str,
        category: FavoriteCategory,
        name: str
    ) -> FavoritesFolder:
        """Create an empty folder.

        Raises:
            ValueError: If the name is blank
        """
        if not name.strip():
            raise ValueError("Folder name must not be empty")

        folder = FavoritesFolder(id=f"folder_{uuid.uuid4().hex[:8]}", name=name.strip())
        with self._lock:
            self._user(username)[category].folders.append(folder)
        return folder

    def rename_folder(
        self,
        username: str,
        category: FavoriteCategory,
        folder_id: str,
        name: str
    ) -> None:
        """Rename a folder.

        Raises:
            ValueError: If the name is blank
            KeyError: If the folder does not exist
        """
        if not name.strip():
            raise ValueError("Folder name must not be empty")

        with self._lock:
            folder = self._user(username)[category].find_folder(folder_id)
            if folder is None:
                raise KeyError(f"Unknown folder: {folder_id}")
            folder.name = name.strip()

    def delete_folder(self, username: str, category: FavoriteCategory, folder_id: str) -> bool:
        """Delete a folder together with the references it holds."""
        with self._lock:
            favorites = self._user(username)[category]
            before = len(favorites.folders)
            favorites.folders = [folder for folder in favorites.folders if folder.id != folder_id]
            deleted = len(favorites.folders) < before
            if deleted:
                self._prune()
            return deleted

    def list_folders(self, username: str, category: FavoriteCategory) -> List[FavoritesFolder]:
        """Snapshots of the category's folders."""
        with self._lock:
            return [
                replace(folder, images=list(folder.images))
                for folder in self._user(username)[category].folders
            ]

    def forget_user(self, username: str) -> None:
        """Drop all favorites of a deleted user."""
        with self._lock:
            if self._favorites.pop(username.strip().lower(), None) is not None:
                self._prune()

    def list_images(
        self,
        username: str,
        category: FavoriteCategory = FavoriteCategory.PHOTOS,
        folder_id: str = ROOT_FOLDER
    ) -> List[FavoriteImage]:
        """Saved images of one folder, oldest first.

        Raises:
            KeyError: If the folder does not exist
        """
        with self._lock:
            ids = self._target(self._user(username)[category], folder_id)
            return [self._images[image_id] for image_id in ids if image_id in self._images]
