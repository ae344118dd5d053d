"""
Extraction strategy registry.

Static table of (entity, sheet) -> strategy. Each entity lists the sheets
it understands as ``SheetRule`` entries; the import service asks the
registry which rules apply to the sheets present in an upload.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, List, Sequence, Tuple, Union

from backend.models.charts import ChartPayload, KPIRow
from backend.models.entities import EntityId
from services import extraction_service as extract
from services.workbook_reader import Grid

logger = logging.getLogger(__name__)

KPI_DATA_KEY = 'kpis'

Strategy = Callable[[Grid], Union[List[KPIRow], ChartPayload]]


@dataclass(frozen=True)
class SheetRule:
    """
    One recognised sheet.

    Attributes:
        data_key: Dataset key the result is stored under
        strategy: Pure function grid -> KPI rows or a chart payload
        names: Exact sheet titles, preferred in order
        aliases: Lower-case substrings for the fallback match
    """
    data_key: str
    strategy: Strategy
    names: Tuple[str, ...]
    aliases: Tuple[str, ...] = field(default=())

    @property
    def is_kpi_table(self) -> bool:
        return self.data_key == KPI_DATA_KEY

    def match_aliases(self) -> Tuple[str, ...]:
        return self.aliases or tuple(n.lower() for n in self.names)


def _rule(data_key: str, strategy: Strategy, *names: str, aliases: Sequence[str] = ()) -> SheetRule:
    return SheetRule(data_key, strategy, tuple(names), tuple(aliases))


line = extract.extract_line
bars = partial(extract.extract_line, label_field='name')
pie = extract.extract_pie

KPI_RULE = _rule(KPI_DATA_KEY, extract.extract_kpis, 'KPIs', aliases=('kpi',))

STRATEGY_TABLE: Dict[EntityId, List[SheetRule]] = {
    EntityId.JANASHAKTHI_LIMITED: [
        KPI_RULE,
        _rule('shareComposition', pie, 'Share Composition'),
        _rule('overheads', bars, 'Overheads vs Budget', aliases=('overhead',)),
        _rule('wacdMovement', line, 'WACD Movement', 'WACD vs AWPLR', 'WACD', 'WACD_Movement',
              aliases=('wacd', 'awplr')),
        _rule('maturityProfile', pie, 'Maturity Profile'),
    ],
    EntityId.JANASHAKTHI_INSURANCE: [
        KPI_RULE,
        _rule('retailBusinessFYP', line, 'Retail Business FYP'),
        _rule('jsvFYP', line, 'JSV FYP'),
        _rule('dtaFYP', line, 'DTA FYP'),
        _rule('renewalPremium', line, 'Renewal Premium'),
        _rule('ulCreditRating', line, 'UL CR vs UL FY'),
        _rule('surplusActual', line, 'Surplus Actual vs Budget', aliases=('surplus',)),
    ],
    EntityId.FIRST_CAPITAL: [
        KPI_RULE,
        _rule('netIncomeAgainstBudget', line, 'Net Income vs Budget'),
        _rule('tradingComposition', pie, 'Trading Composition'),
        _rule('unitTrustAUM', line, 'Unit Trust AUM'),
        _rule('wmAUM', line, 'WM AUM'),
        _rule('portfolioManagement', line, 'Portfolio Management'),
        _rule('overheadsAgainstBudget', bars, 'Overheads vs Budget', aliases=('overhead',)),
        _rule('treasuriesData',
              partial(extract.extract_matrix, fields=('month', 'tBills', 'outrightSale', 'govSecurities')),
              'Treasuries Data', aliases=('treasur',)),
        _rule('dealingSecurities', extract.extract_matrix, 'Dealing Securities'),
        _rule('fceMarketTurnover', extract.extract_composite, 'FCE Market Turnover', 'Market Turnover',
              aliases=('market turnover',)),
    ],
    EntityId.JANASHAKTHI_FINANCE: [
        KPI_RULE,
        _rule('netInterestIncomeAgainstBudget', line, 'Net Interest Income vs Budget'),
        _rule('loanComposition', pie, 'Loan Composition'),
        _rule('overheadsAgainstBudget', bars, 'Overheads vs Budget', aliases=('overhead',)),
        _rule('businessActivity',
              partial(extract.extract_matrix,
                      fields=('month', 'newFDs', 'fdsWithdrawn', 'otherLoans', 'goldLoans')),
              'Business Activity'),
    ],
}

_missing = set(EntityId) - set(STRATEGY_TABLE)
if _missing:
    raise RuntimeError(f"No extraction rules for entities: {sorted(e.value for e in _missing)}")


def rules_for(entity_id: EntityId) -> List[SheetRule]:
    return STRATEGY_TABLE[EntityId(entity_id)]


def resolve(entity_id: EntityId, sheet_names: Sequence[str]) -> List[Tuple[SheetRule, str]]:
    """
    Pair the entity's rules with the sheets present in a workbook.

    Exact title matches are taken first across all rules; remaining rules
    then fall back to a case-insensitive substring match on their aliases
    over sheets nobody claimed yet. Result is in rule order. Sheets no rule
    claims are skipped.
    """
    rules = rules_for(entity_id)
    claimed: Dict[str, SheetRule] = {}
    chosen: Dict[str, str] = {}

    for rule in rules:
        for name in rule.names:
            if name in sheet_names and name not in claimed:
                claimed[name] = rule
                chosen[rule.data_key] = name
                break

    for rule in rules:
        if rule.data_key in chosen:
            continue
        for sheet in sheet_names:
            if sheet in claimed:
                continue
            lowered = sheet.lower()
            if any(alias in lowered for alias in rule.match_aliases()):
                claimed[sheet] = rule
                chosen[rule.data_key] = sheet
                logger.info(f"Sheet '{sheet}' matched {rule.data_key} by alias")
                break

    skipped = [s for s in sheet_names if s not in claimed]
    if skipped:
        logger.debug(f"No strategy for sheets {skipped} ({EntityId(entity_id).value})")

    return [(rule, chosen[rule.data_key]) for rule in rules if rule.data_key in chosen]


def chart_keys() -> List[str]:
    """Every chart dataset key known to the registry."""
    keys = []
    for rules in STRATEGY_TABLE.values():
        for rule in rules:
            if not rule.is_kpi_table and rule.data_key not in keys:
                keys.append(rule.data_key)
    return keys


def snake_case(key: str) -> str:
    """Legacy spelling of a camelCase key, e.g. wacdMovement -> wacd_movement."""
    key = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', key)
    key = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', key)
    return key.lower()
