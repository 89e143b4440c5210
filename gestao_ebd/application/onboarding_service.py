from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict

from gestao_ebd.changefeed import ChangeFeed, RecordChanged, column_equals
from gestao_ebd.db import utc_now_text
from gestao_ebd.domain.onboarding import (
    ALL_PHASE_IDS,
    COMPLETE_PHASES,
    CYCLE_PHASE_IDS,
    ONBOARDING_REFERENCE_VALUE,
    PHASE_APPLY_ITEM,
    PHASE_CLASS,
    PHASE_CONFIGURATION,
    PHASE_INSTRUCTOR,
    PHASE_LAUNCH,
    PHASE_PLANNING,
    PHASE_ROSTER,
    SIMPLIFIED_PHASES,
    BirthdayCoupon,
    OnboardingDiscount,
    OnboardingMode,
    OnboardingPhase,
    OnboardingProgress,
    PhaseDetection,
    calculate_onboarding_discount,
    is_birthday,
    parse_birthday,
    progress_percent,
)
from gestao_ebd.errors import NotFoundError, PreconditionError, ValidationError
from gestao_ebd.infrastructure.repositories.onboarding_repository import (
    ChurchActivityRepository,
    OnboardingRepository,
)
from gestao_ebd.infrastructure.repositories.order_repository import OrderRepository
from gestao_ebd.infrastructure.repositories.party_repository import ChurchRepository


BIRTHDAY_COUPON_VALUE = 50.0
BIRTHDAY_COUPON_CREDIT = "cupom_aniversario"
WATCHED_TABLES = (
    ("ebd_onboarding_progress", "church_id"),
    ("ebd_revistas_cliente", "church_id"),
    ("ebd_clientes", "id"),
)


class OnboardingService:
    """Onboarding progress for a church.

    Two phase sets exist. Churches that already went through the full
    onboarding (configuration and launch done) restart a short five phase
    cycle each time a new base item is purchased; the cycle stays open
    until its five phases are complete, and only activity recorded after
    the cycle's first phase counts towards the later ones.
    """

    def __init__(
        self,
        *,
        onboarding: OnboardingRepository,
        activity: ChurchActivityRepository,
        churches: ChurchRepository,
        orders: OrderRepository,
        change_feed: ChangeFeed | None = None,
        today_fn: Callable[[], date] | None = None,
        now_fn: Callable[[], str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.onboarding = onboarding
        self.activity = activity
        self.churches = churches
        self.orders = orders
        self.change_feed = change_feed
        self.today_fn = today_fn or date.today
        self.now_fn = now_fn or utc_now_text
        self.logger = logger or logging.getLogger("gestao_ebd")

    calculate_onboarding_discount = staticmethod(calculate_onboarding_discount)

    def compute_progress(self, db, church_id: int) -> OnboardingProgress:
        church = self._church(db, church_id)
        mode, stored, cycle_started = self._resolve_mode(db, church)

        phase_set = SIMPLIFIED_PHASES if mode == OnboardingMode.SIMPLIFIED else COMPLETE_PHASES
        phases = [
            OnboardingPhase(
                id=phase_id,
                titulo=titulo,
                descricao=descricao,
                completada=bool(stored.get(phase_id, {}).get("completada")),
                completada_em=stored.get(phase_id, {}).get("completada_em"),
            )
            for phase_id, titulo, descricao in phase_set
        ]
        done = sum(1 for phase in phases if phase.completada)
        all_done = done == len(phases)

        concluded = bool(church["onboarding_concluido"])
        discount_percent = church.get("desconto_onboarding") if concluded else None
        if mode == OnboardingMode.SIMPLIFIED:
            # Cycles conclude on their own phases, without reward.
            concluded = all_done
            discount_percent = None
            if all_done and cycle_started and self.activity.count_unapplied_base_items(db, church_id) == 0:
                self.churches.set_cycle_start(db, church_id, None)
                db.commit()
                self.logger.info("onboarding_cycle_completed", extra={"church_id": church_id})
        elif not concluded and all_done and self._has_birthday(church):
            discount = self._conclude(db, church_id)
            concluded = True
            discount_percent = discount.percent

        identified_id, identified_title = self._identified_item(db, church_id, stored)
        return OnboardingProgress(
            church_id=church_id,
            mode=mode,
            phases=phases,
            percent=progress_percent(done, len(phases)),
            concluded=concluded,
            discount_percent=float(discount_percent) if discount_percent is not None else None,
            identified_item_id=identified_id,
            identified_item_title=identified_title,
        )

    def mark_phase_complete(
        self,
        db,
        church_id: int,
        phase_id: int,
        extra: Dict[str, Any] | None = None,
    ) -> OnboardingProgress:
        try:
            phase_id = int(phase_id)
        except (TypeError, ValueError):
            phase_id = 0
        if phase_id not in ALL_PHASE_IDS:
            raise ValidationError(
                code="onboarding_phase_invalid",
                message_key="onboarding_phase_invalid",
                payload={"phase_id": phase_id},
            )
        self._church(db, church_id)
        extra = dict(extra or {})
        item_id = None

        try:
            if phase_id == PHASE_APPLY_ITEM and extra.get("revista_id"):
                item = self.activity.get_item(db, church_id, int(extra["revista_id"]))
                if item is None:
                    raise ValidationError(
                        code="onboarding_phase_invalid",
                        message_key="onboarding_phase_invalid",
                        details="revista nao encontrada para esta igreja",
                        payload={"revista_id": extra["revista_id"]},
                    )
                item_id = item["id"]
                if not item["aplicada"]:
                    self.activity.apply_item(db, church_id, item_id, applied_at=self.now_fn())
            if phase_id == PHASE_CONFIGURATION:
                self._store_birthdays(db, church_id, extra)

            self.onboarding.upsert_phase(
                db,
                church_id,
                phase_id,
                completada=True,
                completada_em=self.now_fn(),
                revista_identificada_id=item_id,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        self.logger.info("onboarding_phase_completed", extra={"church_id": church_id, "phase_id": phase_id})
        return self.compute_progress(db, church_id)

    def auto_detect_phases(self, db, church_id: int) -> PhaseDetection:
        church = self._church(db, church_id)
        mode, stored, cycle_started = self._resolve_mode(db, church)
        simplified = mode == OnboardingMode.SIMPLIFIED

        phase_one = stored.get(PHASE_APPLY_ITEM, {})
        since = None
        if simplified:
            since = phase_one.get("completada_em") if phase_one.get("completada") else cycle_started

        checks = {
            PHASE_APPLY_ITEM: lambda: (
                self.activity.count_applied_items(db, church_id, since=cycle_started if simplified else None) > 0
                and self.activity.count_unapplied_base_items(db, church_id) == 0
            ),
            PHASE_CLASS: lambda: self.activity.count_active_classes(db, church_id, since=since) > 0,
            PHASE_INSTRUCTOR: lambda: self.activity.count_active_instructors(db, church_id, since=since) > 0,
            PHASE_PLANNING: lambda: self.activity.count_planning(db, church_id, since=since) > 0,
            PHASE_ROSTER: lambda: self.activity.count_rosters(db, church_id, since=since) > 0,
        }

        detection = PhaseDetection(mode=mode)
        try:
            for phase_id in CYCLE_PHASE_IDS:
                if stored.get(phase_id, {}).get("completada"):
                    continue
                if not checks[phase_id]():
                    continue
                item_id = None
                if phase_id == PHASE_APPLY_ITEM:
                    latest = self.activity.latest_item(db, church_id, applied=True)
                    item_id = latest["id"] if latest else None
                self.onboarding.upsert_phase(
                    db,
                    church_id,
                    phase_id,
                    completada=True,
                    completada_em=self.now_fn(),
                    revista_identificada_id=item_id,
                )
                detection.completed.append(phase_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        if detection.completed:
            self.logger.info(
                "onboarding_phases_detected",
                extra={"church_id": church_id, "phases": detection.completed, "mode": mode},
            )
        return detection

    def birthday_coupon(self, db, church_id: int) -> BirthdayCoupon:
        church = self._church(db, church_id)
        today = self.today_fn()
        birthday_of = None
        for label, column in (("pastor", "data_aniversario_pastor"), ("superintendente", "data_aniversario_superintendente")):
            if is_birthday(parse_birthday(church.get(column)), today):
                birthday_of = label
                break
        redeemed_year = church.get("cupom_aniversario_ano")
        already_redeemed = redeemed_year is not None and int(redeemed_year) == today.year
        return BirthdayCoupon(
            church_id=church_id,
            available=bool(birthday_of) and not already_redeemed,
            birthday_of=birthday_of,
            value=BIRTHDAY_COUPON_VALUE if birthday_of else 0.0,
            valid_until=date(today.year, 12, 31) if birthday_of else None,
            already_redeemed=already_redeemed,
        )

    def redeem_birthday_coupon(self, db, church_id: int) -> Dict[str, Any]:
        coupon = self.birthday_coupon(db, church_id)
        if not coupon.available:
            raise PreconditionError(
                code="birthday_coupon_unavailable",
                message_key="birthday_coupon_unavailable",
                payload={"church_id": church_id, "already_redeemed": coupon.already_redeemed},
            )
        year = self.today_fn().year
        try:
            if not self.churches.redeem_birthday_coupon(db, church_id, year):
                raise PreconditionError(
                    code="birthday_coupon_unavailable",
                    message_key="birthday_coupon_unavailable",
                    payload={"church_id": church_id, "already_redeemed": True},
                )
            credit = self.churches.insert_credit(
                db,
                cliente_id=church_id,
                tipo=BIRTHDAY_COUPON_CREDIT,
                valor=coupon.value,
                descricao=f"Cupom de aniversario ({coupon.birthday_of}) {year}",
                validade=coupon.valid_until.isoformat(),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        self.logger.info(
            "birthday_coupon_redeemed",
            extra={"church_id": church_id, "year": year, "credit_id": credit["id"]},
        )
        return credit

    def watch(self, church_id: int, handler: Callable[[RecordChanged], None]) -> Callable[[], None]:
        """Subscribe ``handler`` to changes that affect this church's progress."""
        if self.change_feed is None:
            return lambda: None
        unsubscribers = [
            self.change_feed.on_change(table, column_equals(column, church_id), handler)
            for table, column in WATCHED_TABLES
        ]

        def unsubscribe() -> None:
            for release in unsubscribers:
                release()

        return unsubscribe

    def _church(self, db, church_id: int) -> Dict[str, Any]:
        church = self.churches.get_by_id(db, church_id)
        if church is None:
            raise NotFoundError(
                code="church_not_found",
                message_key="church_not_found",
                payload={"church_id": church_id},
            )
        return church

    def _resolve_mode(self, db, church: Dict[str, Any]) -> tuple[str, Dict[int, Dict[str, Any]], str | None]:
        church_id = church["id"]
        stored = self.onboarding.list_phases(db, church_id)
        cycle_started = church.get("onboarding_ciclo_iniciado_em")
        setup_done = all(stored.get(phase_id, {}).get("completada") for phase_id in (PHASE_CONFIGURATION, PHASE_LAUNCH))
        if not setup_done:
            return OnboardingMode.COMPLETE, stored, None

        if cycle_started:
            return OnboardingMode.SIMPLIFIED, stored, str(cycle_started)
        if self.activity.count_unapplied_base_items(db, church_id) == 0:
            return OnboardingMode.COMPLETE, stored, None

        # New base item after a finished setup: completions of 1-5 belong to the last cycle.
        cycle_started = self.now_fn()
        try:
            self.churches.set_cycle_start(db, church_id, cycle_started)
            self.onboarding.reset_phases(db, church_id, CYCLE_PHASE_IDS)
            db.commit()
        except Exception:
            db.rollback()
            raise
        self.logger.info(
            "onboarding_mode_switched",
            extra={"church_id": church_id, "mode": OnboardingMode.SIMPLIFIED, "cycle_started": cycle_started},
        )
        return OnboardingMode.SIMPLIFIED, self.onboarding.list_phases(db, church_id), cycle_started

    def _conclude(self, db, church_id: int) -> OnboardingDiscount:
        last_value = self.orders.latest_order_value(db, church_id)
        discount = calculate_onboarding_discount(last_value if last_value else ONBOARDING_REFERENCE_VALUE)
        try:
            concluded_now = self.churches.mark_onboarding_concluded(db, church_id, discount_percent=discount.percent)
            db.commit()
        except Exception:
            db.rollback()
            raise
        if concluded_now:
            self.logger.info(
                "onboarding_concluded",
                extra={"church_id": church_id, "discount_percent": discount.percent, "max_value": discount.max_value},
            )
        else:
            stored = self.churches.get_by_id(db, church_id)
            discount = OnboardingDiscount(percent=int(stored["desconto_onboarding"] or 0), max_value=discount.max_value)
        return discount

    def _store_birthdays(self, db, church_id: int, extra: Dict[str, Any]) -> None:
        pastor = parse_birthday(extra.get("data_aniversario_pastor"))
        superintendente = parse_birthday(extra.get("data_aniversario_superintendente"))
        if pastor is None and superintendente is None:
            raise ValidationError(code="birthday_required", message_key="birthday_required")
        self.churches.update_birthdays(
            db,
            church_id,
            pastor=pastor.isoformat() if pastor else None,
            superintendente=superintendente.isoformat() if superintendente else None,
        )

    @staticmethod
    def _has_birthday(church: Dict[str, Any]) -> bool:
        return bool(church.get("data_aniversario_pastor") or church.get("data_aniversario_superintendente"))

    def _identified_item(
        self,
        db,
        church_id: int,
        stored: Dict[int, Dict[str, Any]],
    ) -> tuple[int | None, str | None]:
        item = None
        stored_id = stored.get(PHASE_APPLY_ITEM, {}).get("revista_identificada_id")
        if stored_id:
            item = self.activity.get_item(db, church_id, int(stored_id))
        if item is None:
            item = self.activity.latest_item(db, church_id, applied=False)
        if item is None:
            return None, None
        return int(item["id"]), item.get("titulo")

