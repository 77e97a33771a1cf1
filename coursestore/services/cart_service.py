# coursestore/services/cart_service.py
from datetime import datetime, timezone
from typing import Iterable, List

from pydantic import TypeAdapter
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursestore.data.models.cart import CartModel
from coursestore.domain.errors import AlreadyOwned, ConcurrentModification, DuplicateItem, NotFound
from coursestore.domain.pricing import courses_to_next_tier, price_cart, split_lines, tier_for
from coursestore.domain.schemas import (
    BundleLine,
    BundleRecord,
    CartConflict,
    CartLine,
    CartOut,
    CartSummary,
    CartValidation,
    CourseLine,
    ItemKind,
)
from coursestore.repos.cart_repo import CartRepo
from coursestore.services.access_service import AccessService
from coursestore.services.content_client import ContentClient
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)

_lines_adapter = TypeAdapter(List[CartLine])


def line_from_record(record) -> CourseLine | BundleLine:
    """Build a cart line from a catalog record, prices come from the catalog only."""
    if isinstance(record, BundleRecord):
        return BundleLine(
            item_id=record.id,
            title=record.title,
            unit_original_price=record.price,
            unit_price=record.price,
            validity_months=record.validity_months,
            thumbnail_url=record.thumbnail_url,
        )
    return CourseLine(
        item_id=record.id,
        title=record.title,
        unit_original_price=record.price,
        thumbnail_url=record.thumbnail_url,
    )


class CartService:
    """
    Cart aggregate, one cart per buyer.

    commands (replace, add, remove, clear, merge) always re-price through the
    pricing engine and write lines + summary as one snapshot, guarded by the
    cart version (optimistic locking)
    query (get, validate) only reads
    """

    def __init__(
        self,
        db: Session,
        content_client: ContentClient | None = None,
        access_service: AccessService | None = None,
    ):
        self.repo = CartRepo(db)
        self.content_client = content_client
        self.access_service = access_service or AccessService(db)

    # =====================================================
    # QUERY
    # =====================================================
    def _load(self, buyer_id: str) -> tuple[CartModel | None, list]:
        cart = self.repo.get_cart(buyer_id)
        if not cart:
            return None, []
        return cart, _lines_adapter.validate_python(cart.lines or [])

    def get_cart(self, buyer_id: str) -> CartOut:
        cart, lines = self._load(buyer_id)

        if not cart:
            return CartOut(buyer_id=buyer_id, lines=[], summary=CartSummary(), version=0)

        return CartOut(
            buyer_id=cart.buyer_id,
            lines=lines,
            summary=CartSummary.model_validate(cart.summary or {}),
            version=cart.version,
            updated_at=cart.updated_at,
        )

    def validate(self, buyer_id: str, lines: Iterable | None = None) -> CartValidation:
        """Duplicate and ownership conflicts plus tier hints, nothing is written."""
        if lines is None:
            _, lines = self._load(buyer_id)
        lines = list(lines)

        errors: list[str] = []
        warnings: list[str] = []
        conflicts: list[CartConflict] = []

        seen = set()
        for line in lines:
            if line.key in seen:
                message = f"Duplicate item in cart: {line.title}"
                errors.append(message)
                conflicts.append(CartConflict(
                    item_id=line.item_id, kind=line.kind, title=line.title,
                    conflict_type="duplicate", message=message,
                ))
            seen.add(line.key)

        course_lines, bundle_lines = split_lines(lines)

        if course_lines:
            access_map = self.access_service.check_multiple_access(
                buyer_id, [line.item_id for line in course_lines]
            )
            for line in course_lines:
                access = access_map.get(line.item_id)
                if access and access.has_access:
                    in_bundle = access.type == "bundle"
                    message = (
                        f'You own "{line.title}" through a bundle'
                        if in_bundle
                        else f'You already own "{line.title}"'
                    )
                    errors.append(message)
                    conflicts.append(CartConflict(
                        item_id=line.item_id, kind=line.kind, title=line.title,
                        conflict_type="in_bundle" if in_bundle else "already_owned",
                        message=message,
                    ))

        for line in bundle_lines:
            if self.access_service.owns_bundle(buyer_id, line.item_id):
                message = f'You already own the "{line.title}" bundle'
                errors.append(message)
                conflicts.append(CartConflict(
                    item_id=line.item_id, kind=line.kind, title=line.title,
                    conflict_type="already_owned", message=message,
                ))

        missing = courses_to_next_tier(len(course_lines))
        if course_lines and missing is not None:
            next_tier = tier_for(len(course_lines) + missing)
            warnings.append(f"Add {missing} more course(s) to reach the {next_tier.value} tier")

        for line in lines:
            if line.unit_original_price <= 0:
                warnings.append(f'Invalid price for "{line.title}"')

        return CartValidation(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            conflicts=conflicts,
            item_count=len(lines),
            course_count=len(course_lines),
            bundle_count=len(bundle_lines),
            tier=tier_for(len(course_lines)),
        )

    # =====================================================
    # COMMANDS
    # =====================================================
    def _save(self, buyer_id: str, cart: CartModel | None, lines: list) -> CartOut:
        priced = price_cart(lines)
        snapshot = {
            "lines": [line.model_dump(mode="json") for line in priced.lines],
            "summary": priced.summary.model_dump(mode="json"),
            "updated_at": datetime.now(timezone.utc),
        }

        if cart is None:
            try:
                self.repo.create_cart(CartModel(buyer_id=buyer_id, version=1, **snapshot))
                self.repo.commit()
            except IntegrityError:
                # another request created the cart first
                self.repo.rollback()
                raise ConcurrentModification("Cart was modified by another request, retry")
            logger.info(f"Created cart for buyer {buyer_id}")
            return self.get_cart(buyer_id)

        # Optimistic locking
        # UPDATE carts SET version = 2 ... WHERE id = 1 AND version = 1
        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=cart.version,
            new_data={**snapshot, "version": cart.version + 1},
        )

        if rowcount == 0:
            self.repo.rollback()
            raise ConcurrentModification("Cart was modified by another request, retry")

        self.repo.commit()
        self.repo.refresh(cart)

        logger.info(
            f"Cart of buyer {buyer_id} saved with {len(priced.lines)} lines, "
            f"tier {priced.summary.tier.value}, version {cart.version}"
        )
        return self.get_cart(buyer_id)

    def replace(self, buyer_id: str, lines: Iterable) -> CartOut:
        lines = list(lines)
        seen = set()
        for line in lines:
            if line.key in seen:
                raise DuplicateItem(f'"{line.title}" appears more than once')
            seen.add(line.key)

        cart, _ = self._load(buyer_id)
        return self._save(buyer_id, cart, lines)

    def _assert_not_owned(self, buyer_id: str, line):
        if isinstance(line, CourseLine):
            access = self.access_service.check_access(buyer_id, line.item_id)
            if access.has_access:
                raise AlreadyOwned(
                    f'You already have access to "{line.title}"',
                    access_info=access.model_dump(mode="json"),
                )
        elif self.access_service.owns_bundle(buyer_id, line.item_id):
            raise AlreadyOwned(f'You already have access to the "{line.title}" bundle')

    def add_line(self, buyer_id: str, line, skip_ownership_check: bool = False) -> CartOut:
        cart, lines = self._load(buyer_id)

        if any(existing.key == line.key for existing in lines):
            raise DuplicateItem(f'"{line.title}" is already in your cart')

        if not skip_ownership_check:
            self._assert_not_owned(buyer_id, line)

        logger.info(f"Adding {line.kind} {line.item_id} to cart of buyer {buyer_id}")
        return self._save(buyer_id, cart, [*lines, line])

    def add_item(
        self,
        buyer_id: str,
        kind: ItemKind | str,
        item_id: str,
        skip_ownership_check: bool = False,
    ) -> CartOut:
        logger.info(f"Fetching {kind} {item_id} from content service")
        record = self.content_client.fetch_item(kind, item_id)
        return self.add_line(buyer_id, line_from_record(record), skip_ownership_check)

    def remove_line(self, buyer_id: str, kind: ItemKind | str, item_id: str) -> CartOut:
        kind = ItemKind(kind).value
        cart, lines = self._load(buyer_id)

        remaining = [line for line in lines if line.key != (kind, item_id)]
        if len(remaining) == len(lines):
            raise NotFound(f"{kind.capitalize()} {item_id} is not in the cart")

        logger.info(f"Removing {kind} {item_id} from cart of buyer {buyer_id}")
        return self._save(buyer_id, cart, remaining)

    def clear(self, buyer_id: str) -> CartOut:
        cart, lines = self._load(buyer_id)
        if not cart or not lines:
            return self.get_cart(buyer_id)

        logger.info(f"Clearing cart of buyer {buyer_id}")
        return self._save(buyer_id, cart, [])

    def merge(self, buyer_id: str, local_lines: Iterable) -> CartOut:
        """Sign-in merge: union keyed by (kind, item_id), the local line wins."""
        cart, remote_lines = self._load(buyer_id)

        merged = {line.key: line for line in remote_lines}
        for line in local_lines:
            merged[line.key] = line

        logger.info(
            f"Merging local cart into cart of buyer {buyer_id}: "
            f"{len(remote_lines)} remote, {len(merged)} after merge"
        )
        return self._save(buyer_id, cart, list(merged.values()))
