"""
Medicine interaction checks.

Results are advisory: they are stored on the prescription and surfaced
to the reviewer, never used to block a transition.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from django.db import models
from django.utils.translation import gettext_lazy as _


class Severity(models.TextChoices):
    MILD = 'mild', _('Mild')
    MODERATE = 'moderate', _('Moderate')
    SEVERE = 'severe', _('Severe')


@dataclass(frozen=True)
class Medicine:
    """The view of a medicine the interaction checker works on."""
    medicine_id: str
    name: str
    active_ingredient: str = ''
    category: str = ''


@dataclass(frozen=True)
class InteractionRule:
    drug1: str
    drug2: str
    severity: str
    description: str


@dataclass(frozen=True)
class Interaction:
    medicine1: str
    medicine2: str
    severity: str
    description: str

    def to_dict(self):
        return {
            'medicine1': self.medicine1,
            'medicine2': self.medicine2,
            'severity': str(self.severity),
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            medicine1=data['medicine1'],
            medicine2=data['medicine2'],
            severity=data['severity'],
            description=data.get('description', ''),
        )


@dataclass
class InteractionReport:
    interactions: List[Interaction] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_interactions(self) -> bool:
        return bool(self.interactions)


DEFAULT_RULES = (
    InteractionRule('Warfarin', 'Aspirin', Severity.SEVERE,
                    'Increased risk of bleeding. Monitor INR closely.'),
    InteractionRule('Metformin', 'Alcohol', Severity.MODERATE,
                    'Risk of lactic acidosis. Limit alcohol intake.'),
    InteractionRule('Paracetamol', 'Alcohol', Severity.MODERATE,
                    'Increased risk of liver damage.'),
    InteractionRule('Ibuprofen', 'Warfarin', Severity.SEVERE,
                    'Increased bleeding risk and reduced anticoagulant control.'),
    InteractionRule('Amoxicillin', 'Methotrexate', Severity.MODERATE,
                    'Reduced methotrexate clearance; risk of toxicity.'),
    InteractionRule('Omeprazole', 'Clopidogrel', Severity.MODERATE,
                    'Reduced antiplatelet effect of clopidogrel.'),
)

CATEGORY_WARNINGS = {
    'pain-relief': 'Multiple pain relief medications: check for duplicate active ingredients.',
    'antibiotics': 'Multiple antibiotics prescribed: verify this combination is intended.',
    'cardiovascular': 'Multiple cardiovascular medications: monitor blood pressure and heart rate.',
}

DEFAULT_ALTERNATIVES = {
    'pain-relief': ['Paracetamol 500mg', 'Ibuprofen 400mg', 'Diclofenac 50mg'],
    'antibiotics': ['Amoxicillin 500mg', 'Azithromycin 250mg', 'Cefuroxime 500mg'],
    'cardiovascular': ['Aspirin 81mg', 'Clopidogrel 75mg', 'Bisoprolol 5mg'],
    'diabetes': ['Metformin 500mg', 'Gliclazide 80mg'],
    'gastrointestinal': ['Omeprazole 20mg', 'Esomeprazole 40mg'],
}


def _names_match(candidate: str, drug: str) -> bool:
    candidate = (candidate or '').strip().lower()
    drug = drug.lower()
    return bool(candidate) and (drug in candidate or candidate in drug)


class MedicineInteractionService:
    """
    Pairwise interaction lookup against a rule table.

    Names are matched case-insensitively as substrings in either
    direction, then active ingredients are tried the same way.
    """

    def __init__(
        self,
        rules: Iterable[InteractionRule] = DEFAULT_RULES,
        alternatives: Optional[Dict[str, List[str]]] = None,
    ):
        self.rules = tuple(rules)
        self._alternatives = DEFAULT_ALTERNATIVES if alternatives is None else alternatives

    def _rule_for(self, first: Medicine, second: Medicine) -> Optional[InteractionRule]:
        for attribute in ('name', 'active_ingredient'):
            a = getattr(first, attribute)
            b = getattr(second, attribute)
            for rule in self.rules:
                if (_names_match(a, rule.drug1) and _names_match(b, rule.drug2)) or \
                        (_names_match(a, rule.drug2) and _names_match(b, rule.drug1)):
                    return rule
        return None

    def check_interactions(self, medicines: Sequence[Medicine]) -> InteractionReport:
        report = InteractionReport()
        for i, first in enumerate(medicines):
            for second in medicines[i + 1:]:
                rule = self._rule_for(first, second)
                if rule is not None:
                    report.interactions.append(Interaction(
                        medicine1=first.name,
                        medicine2=second.name,
                        severity=rule.severity,
                        description=rule.description,
                    ))

        category_counts: Dict[str, int] = {}
        for medicine in medicines:
            if medicine.category:
                category_counts[medicine.category] = category_counts.get(medicine.category, 0) + 1
        for category, count in category_counts.items():
            if count > 1 and category in CATEGORY_WARNINGS:
                report.warnings.append(CATEGORY_WARNINGS[category])
        return report

    def alternatives(self, medicine: Medicine) -> List[str]:
        """Same-category alternatives, excluding the medicine itself."""
        return [
            name for name in self._alternatives.get(medicine.category, [])
            if not _names_match(name, medicine.name)
        ]
