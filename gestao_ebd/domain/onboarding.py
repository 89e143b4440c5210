from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Tuple


class OnboardingMode:
    COMPLETE = "completo"
    SIMPLIFIED = "simplificado"


PHASE_APPLY_ITEM = 1
PHASE_CLASS = 2
PHASE_INSTRUCTOR = 3
PHASE_PLANNING = 4
PHASE_ROSTER = 5
PHASE_CONFIGURATION = 6
PHASE_LAUNCH = 7

# (id, titulo, descricao)
COMPLETE_PHASES: Tuple[Tuple[int, str, str], ...] = (
    (PHASE_APPLY_ITEM, "Aplicar Revista", "Clique em 'Aplicar Agora' na revista identificada"),
    (PHASE_CLASS, "Cadastrar Turma", "Cadastre pelo menos 1 turma"),
    (PHASE_INSTRUCTOR, "Cadastrar Professor", "Cadastre pelo menos 1 professor"),
    (PHASE_PLANNING, "Definir Data de Inicio", "Marque a data de inicio das aulas"),
    (PHASE_ROSTER, "Criar Escala", "Adicione professores as aulas (crie a escala inicial)"),
    (PHASE_CONFIGURATION, "Configuracoes", "Informe a data de aniversario do pastor ou superintendente"),
    (PHASE_LAUNCH, "Configurar Lancamento", "Configure o lancamento das aulas"),
)
SIMPLIFIED_PHASES: Tuple[Tuple[int, str, str], ...] = COMPLETE_PHASES[:5]
CYCLE_PHASE_IDS = tuple(phase[0] for phase in SIMPLIFIED_PHASES)
ALL_PHASE_IDS = tuple(phase[0] for phase in COMPLETE_PHASES)

ONBOARDING_REFERENCE_VALUE = 300.0


@dataclass(frozen=True)
class OnboardingPhase:
    id: int
    titulo: str
    descricao: str
    completada: bool
    completada_em: str | None = None


@dataclass(frozen=True)
class OnboardingProgress:
    church_id: int
    mode: str
    phases: List[OnboardingPhase]
    percent: int
    concluded: bool
    discount_percent: float | None = None
    identified_item_id: int | None = None
    identified_item_title: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "church_id": self.church_id,
            "mode": self.mode,
            "phases": [
                {
                    "id": phase.id,
                    "titulo": phase.titulo,
                    "descricao": phase.descricao,
                    "completada": phase.completada,
                    "completada_em": phase.completada_em,
                }
                for phase in self.phases
            ],
            "percent": self.percent,
            "concluded": self.concluded,
            "discount_percent": self.discount_percent,
            "identified_item_id": self.identified_item_id,
            "identified_item_title": self.identified_item_title,
        }


@dataclass(frozen=True)
class OnboardingDiscount:
    percent: int
    max_value: float


def calculate_onboarding_discount(order_value: float) -> OnboardingDiscount:
    value = float(order_value)
    if value >= 501:
        return OnboardingDiscount(percent=30, max_value=round(value * 0.30, 2))
    if value >= 301:
        return OnboardingDiscount(percent=25, max_value=round(value * 0.25, 2))
    return OnboardingDiscount(
        percent=20,
        max_value=round(min(value * 0.20, ONBOARDING_REFERENCE_VALUE * 0.20), 2),
    )


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(round(completed * 100 / total))


def parse_birthday(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def is_birthday(birthday: date | None, today: date) -> bool:
    if birthday is None:
        return False
    if birthday.month == 2 and birthday.day == 29 and today.month == 2 and today.day == 28:
        # Feb 29 birthdays are celebrated on Feb 28 outside leap years.
        return not _is_leap(today.year)
    return (birthday.month, birthday.day) == (today.month, today.day)


def _is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


@dataclass(frozen=True)
class BirthdayCoupon:
    church_id: int
    available: bool
    birthday_of: str | None = None
    value: float = 0.0
    valid_until: date | None = None
    already_redeemed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "church_id": self.church_id,
            "available": self.available,
            "birthday_of": self.birthday_of,
            "value": self.value,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "already_redeemed": self.already_redeemed,
        }


@dataclass
class PhaseDetection:
    completed: List[int] = field(default_factory=list)
    mode: str = OnboardingMode.COMPLETE
