"""
Magic shelf service - high-level API for managing magic shelves.

A magic shelf is a named rule tree owned by a user. Its members are never
stored: they are computed by compiling the tree for the viewing user each
time the shelf is read.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
import logging
import yaml

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models import Book, MagicShelf, User
from ..db.session import transaction
from ..rules import Group, RuleValidationError, parse_group, to_specification
from .builtin import BUILTIN_SHELVES, get_builtin_shelf, is_builtin_shelf

logger = logging.getLogger(__name__)

ShelfRef = Union[int, str]


class MagicShelfService:
    """
    Service for managing magic shelves.

    Provides:
    - CRUD operations with per-user ownership
    - Sharing through public shelves
    - Evaluation for the viewing user
    - YAML import/export of shelf definitions
    """

    def __init__(self, session: Session, now: Optional[datetime] = None,
                 week_start: str = 'monday'):
        self.session = session
        self.now = now
        self.week_start = week_start

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    def create(
        self,
        user_id: int,
        name: str,
        rules: Union[Group, Mapping[str, Any]],
        icon: Optional[str] = None,
        icon_type: Optional[str] = None,
        is_public: bool = False,
    ) -> MagicShelf:
        """
        Create a magic shelf for a user.

        Args:
            user_id: Owner
            name: Shelf name (unique per user)
            rules: Root Group, or its JSON form
            icon: Icon identifier shown by clients
            icon_type: Icon kind (PRIME_NG, CUSTOM_SVG)
            is_public: Whether other users can see and evaluate it

        Returns:
            Created MagicShelf

        Raises:
            ValueError: If the name is taken or reserved
            RuleValidationError: If the rule tree is invalid
        """
        if is_builtin_shelf(name):
            raise ValueError(f"Cannot create shelf with reserved name '{name}'")
        if self.get_by_name(user_id, name):
            raise ValueError(f"A shelf named '{name}' already exists for this user")

        shelf = MagicShelf(
            user_id=user_id,
            name=name,
            icon=icon,
            icon_type=icon_type,
            filter_json=self._normalize(rules),
            is_public=is_public,
        )
        with transaction(self.session):
            self.session.add(shelf)
        logger.info(f"Created magic shelf '{name}' for user {user_id}")
        return shelf

    def get(self, shelf_id: int) -> Optional[MagicShelf]:
        """Get a shelf by id."""
        return self.session.get(MagicShelf, shelf_id)

    def get_by_name(self, user_id: int, name: str) -> Optional[MagicShelf]:
        return self.session.query(MagicShelf).filter_by(user_id=user_id, name=name).first()

    def resolve(self, ref: ShelfRef, user_id: int) -> Optional[MagicShelf]:
        """Find a shelf by id, or by name among the user's own then public shelves."""
        if isinstance(ref, int) or str(ref).isdigit():
            return self.get(int(ref))
        own = self.get_by_name(user_id, ref)
        if own:
            return own
        return self.session.query(MagicShelf).filter_by(name=ref, is_public=True).first()

    def list_for_user(self, user_id: int, include_builtin: bool = True) -> List[Dict[str, Any]]:
        """
        List the shelves a user can see.

        Returns built-ins first, then the user's own shelves, then public
        shelves of other users.
        """
        shelves = []

        if include_builtin:
            for name, defn in BUILTIN_SHELVES.items():
                shelves.append({
                    'id': None,
                    'name': name,
                    'description': defn['description'],
                    'builtin': True,
                    'owned': False,
                    'public': True,
                })

        own = self.session.query(MagicShelf).filter_by(user_id=user_id).order_by(MagicShelf.name).all()
        shared = (
            self.session.query(MagicShelf)
            .filter(MagicShelf.is_public.is_(True), MagicShelf.user_id != user_id)
            .order_by(MagicShelf.name)
            .all()
        )
        for shelf in own + shared:
            shelves.append({
                'id': shelf.id,
                'name': shelf.name,
                'icon': shelf.icon,
                'builtin': False,
                'owned': shelf.user_id == user_id,
                'public': shelf.is_public,
                'updated_at': shelf.updated_at,
            })

        return shelves

    def update(
        self,
        shelf_id: int,
        user_id: int,
        name: Optional[str] = None,
        rules: Optional[Union[Group, Mapping[str, Any]]] = None,
        icon: Optional[str] = None,
        icon_type: Optional[str] = None,
        is_public: Optional[bool] = None,
    ) -> MagicShelf:
        """
        Update a shelf owned by user_id. Public shelves need an admin owner.

        Raises:
            ValueError: If the shelf does not exist or the new name is taken
            PermissionError: If the user may not modify the shelf
            RuleValidationError: If the new rule tree is invalid; nothing changes
        """
        shelf = self._owned(shelf_id, user_id, 'update')
        if shelf.is_public and not self._is_admin(user_id):
            raise PermissionError("You are not authorized to update a public shelf")

        # Check every input before the shelf is touched
        filter_json = self._normalize(rules) if rules is not None else None
        if name is not None and name != shelf.name:
            if is_builtin_shelf(name):
                raise ValueError(f"Cannot rename shelf to reserved name '{name}'")
            if self.get_by_name(user_id, name):
                raise ValueError(f"A shelf named '{name}' already exists for this user")

        with transaction(self.session):
            if name is not None:
                shelf.name = name
            if filter_json is not None:
                shelf.filter_json = filter_json
            if icon is not None:
                shelf.icon = icon
            if icon_type is not None:
                shelf.icon_type = icon_type
            if is_public is not None:
                shelf.is_public = is_public

        logger.info(f"Updated magic shelf '{shelf.name}'")
        return shelf

    def delete(self, shelf_id: int, user_id: int) -> None:
        """
        Delete a shelf owned by user_id.

        Raises:
            ValueError: If the shelf does not exist
            PermissionError: If the user does not own it
        """
        shelf = self._owned(shelf_id, user_id, 'delete')
        name = shelf.name
        with transaction(self.session):
            self.session.delete(shelf)
        logger.info(f"Deleted magic shelf '{name}'")

    # =========================================================================
    # Evaluation
    # =========================================================================

    def rules_for(self, ref: ShelfRef, user_id: int) -> Group:
        """
        Rule tree of a built-in or stored shelf visible to user_id.

        Raises:
            ValueError: If the shelf does not exist
            PermissionError: If the shelf is private to another user
        """
        if isinstance(ref, str) and is_builtin_shelf(ref):
            return parse_group(get_builtin_shelf(ref)['rules'])

        shelf = self.resolve(ref, user_id)
        if not shelf:
            raise ValueError(f"Shelf '{ref}' not found")
        if shelf.user_id != user_id and not shelf.is_public:
            raise PermissionError(f"Shelf '{shelf.name}' is private")
        return parse_group(shelf.filter_json)

    def query(self, ref: ShelfRef, user_id: int):
        """Un-executed Book query for a shelf, evaluated for the viewing user."""
        spec = to_specification(
            self.rules_for(ref, user_id), user_id, now=self.now, week_start=self.week_start
        )
        return spec.apply(self.session.query(Book))

    def books(self, ref: ShelfRef, user_id: int,
              limit: Optional[int] = None, offset: int = 0) -> List[Book]:
        """Books on a shelf for the viewing user, ordered by title."""
        query = self.query(ref, user_id).order_by(Book.title, Book.id)
        if limit:
            query = query.limit(limit).offset(offset)
        return query.all()

    def count(self, ref: ShelfRef, user_id: int) -> int:
        return self.query(ref, user_id).with_entities(func.count(Book.id)).scalar()

    def validate(self, rules: Mapping[str, Any]) -> Tuple[bool, Optional[str]]:
        """
        Validate a rule tree without saving.

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            self._normalize(rules)
            return True, None
        except RuleValidationError as e:
            return False, str(e)

    # =========================================================================
    # Import/Export
    # =========================================================================

    def export_yaml(self, ref: ShelfRef, user_id: int) -> str:
        """
        Export a shelf definition as YAML.

        Args:
            ref: Shelf id, name, or built-in name
            user_id: Viewing user

        Returns:
            YAML string
        """
        if isinstance(ref, str) and is_builtin_shelf(ref):
            defn = get_builtin_shelf(ref)
            data = {
                'name': ref,
                'builtin': True,
                'description': defn['description'],
                'rules': defn['rules'],
            }
        else:
            shelf = self.resolve(ref, user_id)
            if not shelf:
                raise ValueError(f"Shelf '{ref}' not found")
            if shelf.user_id != user_id and not shelf.is_public:
                raise PermissionError(f"Shelf '{shelf.name}' is private")
            data = {
                'name': shelf.name,
                'icon': shelf.icon,
                'icon_type': shelf.icon_type,
                'public': shelf.is_public,
                'rules': shelf.filter_json,
            }

        return yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def import_yaml(self, yaml_content: str, user_id: int, overwrite: bool = False) -> MagicShelf:
        """
        Import a shelf from YAML into the user's shelves.

        Args:
            yaml_content: YAML string
            user_id: New owner
            overwrite: If True, replace an existing shelf of the same name

        Returns:
            Created or updated MagicShelf
        """
        data = yaml.safe_load(yaml_content)
        if not isinstance(data, dict):
            raise ValueError("Shelf YAML must be a mapping")

        name = data.get('name')
        if not name:
            raise ValueError("Shelf YAML must include 'name' field")
        if 'rules' not in data:
            raise ValueError("Shelf YAML must include 'rules' field")

        existing = self.get_by_name(user_id, name)
        if existing:
            if not overwrite:
                raise ValueError(f"Shelf '{name}' already exists. Use overwrite=True to replace.")
            return self.update(
                existing.id, user_id,
                rules=data['rules'],
                icon=data.get('icon'),
                icon_type=data.get('icon_type'),
                is_public=data.get('public'),
            )

        return self.create(
            user_id, name, data['rules'],
            icon=data.get('icon'),
            icon_type=data.get('icon_type'),
            is_public=bool(data.get('public', False)),
        )

    def import_file(self, path: Path, user_id: int, overwrite: bool = False) -> MagicShelf:
        """Import a shelf from a YAML file."""
        with open(path) as f:
            return self.import_yaml(f.read(), user_id, overwrite=overwrite)

    def export_file(self, ref: ShelfRef, user_id: int, path: Path) -> None:
        """Export a shelf to a YAML file."""
        yaml_content = self.export_yaml(ref, user_id)
        with open(path, 'w') as f:
            f.write(yaml_content)

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def _normalize(self, rules: Union[Group, Mapping[str, Any]]) -> Dict[str, Any]:
        """Validate a rule tree and return its canonical JSON form."""
        group = rules if isinstance(rules, Group) else parse_group(rules)
        return group.to_dict()

    def _owned(self, shelf_id: int, user_id: int, action: str) -> MagicShelf:
        shelf = self.get(shelf_id)
        if not shelf:
            raise ValueError(f"Shelf {shelf_id} not found")
        if shelf.user_id != user_id:
            raise PermissionError(f"You are not authorized to {action} this shelf")
        return shelf

    def _is_admin(self, user_id: int) -> bool:
        user = self.session.get(User, user_id)
        return bool(user and user.is_admin)
