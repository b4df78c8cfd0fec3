"""Bank statement text parser - rebuilds a Statement from extracted PDF text"""

import logging
import re
from datetime import date
from typing import Dict, List, Optional, Pattern, Tuple

from waterfall_gateway.domain.exceptions import ParseFailure
from waterfall_gateway.domain.models import AccountInfo, Balances, Section, Statement, Transaction
from waterfall_gateway.utils.date_utils import (
    current_month_range,
    parse_any_date,
    parse_numeric_date,
    resolve_month_day,
)

# First match wins
BANK_PATTERNS: List[Tuple[str, Pattern]] = [
    ("Bank of America", re.compile(r"bank\s*of\s*america", re.I)),
    ("Chase", re.compile(r"jpmorgan\s*chase|chase\s*bank", re.I)),
    ("Wells Fargo", re.compile(r"wells\s*fargo", re.I)),
    ("Citibank", re.compile(r"citibank|citi\s*bank", re.I)),
    ("US Bank", re.compile(r"\bu\.?s\.?\s*bank\b", re.I)),
    ("PNC Bank", re.compile(r"\bpnc\s*bank", re.I)),
    ("Capital One", re.compile(r"capital\s*one", re.I)),
    ("TD Bank", re.compile(r"\btd\s*bank", re.I)),
    ("Truist", re.compile(r"bb&t|truist", re.I)),
    ("SunTrust", re.compile(r"suntrust", re.I)),
]

ACCOUNT_PATTERNS: List[Pattern] = [
    re.compile(r"account\s*(?:number|#|no\.?)[\s:]*([0-9X*][0-9X*\-]{3,})", re.I),
    re.compile(r"account\s*ending\s*in[\s:]*(\d{4})", re.I),
    re.compile(r"\*{4,}(\d{4})"),
]

ACCOUNT_HOLDER_PATTERN = re.compile(r"^\s*([A-Z0-9&.,' ]+?\s(?:L\.L\.C\.|LLC|INC\.?|CORP\.?))\s*$", re.M)

_LONG_DATE = r"[A-Za-z]+\s+\d{1,2},?\s+\d{4}"
_NUMERIC_DATE = r"\d{1,2}/\d{1,2}/\d{2,4}"

PERIOD_PATTERNS: List[Pattern] = [
    re.compile(rf"statement\s*period[\s:]*({_LONG_DATE})\s*(?:to|through|-)\s*({_LONG_DATE})", re.I),
    re.compile(rf"({_LONG_DATE})\s+through\s+({_LONG_DATE})", re.I),
    re.compile(rf"from\s+({_LONG_DATE})\s+(?:to|through)\s+({_LONG_DATE})", re.I),
    re.compile(rf"({_NUMERIC_DATE})\s*(?:to|through|-)\s*({_NUMERIC_DATE})", re.I),
]

_BALANCE_AMOUNT = r"(\(?-?\$?\s?-?[\d,]*\d\.\d{2}\)?)"
BEGINNING_BALANCE_PATTERN = re.compile(
    rf"(?:beginning|opening)\s+balance\s*:?\s*(?:\d+\s+)?{_BALANCE_AMOUNT}", re.I
)
ENDING_BALANCE_PATTERN = re.compile(
    rf"(?:ending|closing)\s+balance\s*:?\s*(?:\d+\s+)?{_BALANCE_AMOUNT}", re.I
)

STRUCTURE_MARKERS = re.compile(r"account|balance|statement|deposit|withdrawal|transaction", re.I)
DATE_TOKEN = re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b")

TRANSACTION_LINE = re.compile(
    r"^(?P<date>\d{1,2}/\d{1,2}(?:/\d{2,4})?)\s+"
    r"(?P<description>.+?)\s+"
    r"(?P<amount>[-+]?\(?-?\$?\s?[\d,]*\d\.\d{2}\)?)$"
)

# Header text (normalized) -> section entered. Headers reachable from any state.
SECTION_TRANSITIONS: Dict[str, Section] = {
    "DEPOSITS AND ADDITIONS": Section.DEPOSITS,
    "DEPOSITS AND OTHER CREDITS": Section.DEPOSITS,
    "DEPOSITS": Section.DEPOSITS,
    "ATM & DEBIT CARD WITHDRAWALS": Section.WITHDRAWALS,
    "WITHDRAWALS AND OTHER DEBITS": Section.WITHDRAWALS,
    "WITHDRAWALS": Section.WITHDRAWALS,
    "CHECKS PAID": Section.WITHDRAWALS,
    "ELECTRONIC WITHDRAWALS": Section.ELECTRONIC,
    "ELECTRONIC PAYMENTS": Section.ELECTRONIC,
    "FEES": Section.FEES,
    "SERVICE CHARGES": Section.FEES,
    "FEES AND SERVICE CHARGES": Section.FEES,
    "DAILY ENDING BALANCE": Section.NONE,
    "DAILY BALANCE SUMMARY": Section.NONE,
    "CHECKING SUMMARY": Section.NONE,
    "ACCOUNT SUMMARY": Section.NONE,
}

CATEGORY_RULES: Dict[Section, List[Tuple[str, Pattern]]] = {
    Section.DEPOSITS: [
        ("Payroll", re.compile(r"payroll|salary|wages|direct dep", re.I)),
        ("Zelle Payment", re.compile(r"zelle", re.I)),
        ("Cash App", re.compile(r"cash app", re.I)),
        ("Remote Deposit", re.compile(r"remote.*deposit|mobile deposit", re.I)),
        ("ATM Deposit", re.compile(r"atm.*deposit", re.I)),
        ("Merchant Settlement", re.compile(r"square|stripe|shopify|paypal|merchant", re.I)),
        ("ACH Credit", re.compile(r"orig co name|ach credit", re.I)),
        ("Card Return", re.compile(r"return|refund", re.I)),
        ("Transfer", re.compile(r"transfer", re.I)),
    ],
    Section.WITHDRAWALS: [
        ("Groceries", re.compile(r"grocery|supermarket|whole foods|trader joe|kroger|safeway", re.I)),
        ("Restaurants", re.compile(r"restaurant|pizza|burger|coffee|starbucks|mcdonald|chipotle", re.I)),
        ("Gas", re.compile(r"gas station|shell|exxon|chevron|fuel", re.I)),
        ("Shopping", re.compile(r"amazon|ebay|walmart|target|store", re.I)),
        ("Transportation", re.compile(r"uber|lyft|taxi|parking|toll", re.I)),
        ("Healthcare", re.compile(r"pharmacy|doctor|hospital|medical|cvs|walgreens", re.I)),
        ("ATM Withdrawal", re.compile(r"\batm\b", re.I)),
        ("Check", re.compile(r"^check\b|check\s*#", re.I)),
        ("Payment Sent", re.compile(r"payment sent", re.I)),
        ("Card Purchase", re.compile(r"card purchase", re.I)),
    ],
    Section.ELECTRONIC: [
        ("Zelle Payment", re.compile(r"zelle", re.I)),
        ("Online Transfer", re.compile(r"online transfer", re.I)),
        ("Mortgage Payment", re.compile(r"mortgage|mtg", re.I)),
        ("Credit Card Payment", re.compile(r"credit\s*card|cardmember|crd autopay", re.I)),
        ("Utility Payment", re.compile(r"electric|water|utility|waste management|comcast|verizon|at&t", re.I)),
        ("Insurance", re.compile(r"insurance|geico|allstate|progressive", re.I)),
        ("Payroll", re.compile(r"payroll|\badp\b|gusto", re.I)),
        ("Loan Payment", re.compile(r"loan", re.I)),
        ("ACH Payment", re.compile(r"orig co name|\bach\b", re.I)),
    ],
    Section.FEES: [
        ("NSF Fee", re.compile(r"nsf|insufficient funds|returned item", re.I)),
        ("Overdraft Fee", re.compile(r"overdraft", re.I)),
        ("Service Fee", re.compile(r"service (?:fee|charge)|monthly maintenance", re.I)),
        ("ACH Fee", re.compile(r"ach.*fee", re.I)),
        ("Wire Fee", re.compile(r"wire", re.I)),
    ],
}


def normalize_header(line: str) -> str:
    header = " ".join(line.upper().split())
    header = re.sub(r"\s*\(CONTINUED\)\s*$", "", header)
    return header.rstrip(":").strip()


def next_section(current: Section, line: str) -> Section:
    """Section state after reading line; non-header lines keep the current state"""
    return SECTION_TRANSITIONS.get(normalize_header(line), current)


def categorize(description: str, section: Section) -> str:
    for category, pattern in CATEGORY_RULES.get(section, []):
        if pattern.search(description):
            return category
    return "Other"


def parse_amount(text: str) -> float:
    """Magnitude of a money string; sign marks are ignored"""
    cleaned = re.sub(r"[\s$,()+\-]", "", text)
    return abs(float(cleaned))


def parse_balance(text: str) -> float:
    """Money string keeping its sign ('-' or parentheses mean negative)"""
    magnitude = parse_amount(text)
    return -magnitude if "-" in text or "(" in text else magnitude


class StatementTextParser:
    """
    Turns raw extracted statement text into a Statement.

    Transaction lines are only read inside a recognized section
    (deposits, withdrawals, electronic withdrawals, fees); the section alone
    decides the sign of each amount.
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today

    def parse(self, raw_text: str) -> Statement:
        """
        Parse one statement.

        Raises:
            ParseFailure: If the text has no bank-statement markers or no transactions
        """
        if not isinstance(raw_text, str) or not raw_text.strip():
            raise ParseFailure("Document is empty and did not resemble a bank statement")

        if not (STRUCTURE_MARKERS.search(raw_text) or DATE_TOKEN.search(raw_text)):
            raise ParseFailure(
                "Document did not resemble a bank statement: no account, balance, transaction or date markers found"
            )

        account_info = self._extract_account_info(raw_text)
        balances = self._extract_balances(raw_text)
        transactions = self._extract_transactions(raw_text, account_info.period_end)

        if not transactions:
            raise ParseFailure(
                "Document did not resemble a bank statement: no transactions found in any statement section"
            )

        logging.info(
            "Statement parsed",
            extra={
                "step": "parse",
                "bank_name": account_info.bank_name,
                "transaction_count": len(transactions),
                "period_defaulted": account_info.period_defaulted,
            },
        )

        return Statement(account_info=account_info, balances=balances, transactions=transactions)

    def _extract_account_info(self, text: str) -> AccountInfo:
        period_start, period_end, defaulted = self._extract_period(text)
        holder_match = ACCOUNT_HOLDER_PATTERN.search(text)
        return AccountInfo(
            bank_name=self._detect_bank_name(text),
            account_number=self._extract_account_number(text),
            account_holder=holder_match.group(1).strip() if holder_match else None,
            period_start=period_start,
            period_end=period_end,
            period_defaulted=defaulted,
        )

    @staticmethod
    def _detect_bank_name(text: str) -> str:
        for bank_name, pattern in BANK_PATTERNS:
            if pattern.search(text):
                return bank_name
        return "Unknown Bank"

    @staticmethod
    def _extract_account_number(text: str) -> Optional[str]:
        for pattern in ACCOUNT_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1)
        return None

    def _extract_period(self, text: str) -> Tuple[date, date, bool]:
        for pattern in PERIOD_PATTERNS:
            for match in pattern.finditer(text):
                start = parse_any_date(match.group(1))
                end = parse_any_date(match.group(2))
                if start and end and start <= end:
                    return start, end, False

        # No recognizable period: assume the current calendar month
        start, end = current_month_range(self.today or date.today())
        return start, end, True

    @staticmethod
    def _extract_balances(text: str) -> Balances:
        beginning = BEGINNING_BALANCE_PATTERN.search(text)
        ending = ENDING_BALANCE_PATTERN.search(text)
        return Balances(
            beginning=parse_balance(beginning.group(1)) if beginning else None,
            ending=parse_balance(ending.group(1)) if ending else None,
        )

    def _extract_transactions(self, text: str, period_end: date) -> List[Transaction]:
        transactions = []
        section = Section.NONE

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue

            match = TRANSACTION_LINE.match(line)
            if match is None:
                section = next_section(section, line)
                continue

            if section is Section.NONE:
                continue

            transaction = self._parse_transaction(match, section, period_end)
            if transaction is not None:
                transactions.append(transaction)

        return transactions

    @staticmethod
    def _parse_transaction(match: re.Match, section: Section, period_end: date) -> Optional[Transaction]:
        """Build one transaction; malformed lines yield None"""
        raw_date = match.group("date")
        try:
            if raw_date.count("/") == 2:
                txn_date = parse_numeric_date(raw_date)
            else:
                month, day = (int(p) for p in raw_date.split("/"))
                txn_date = resolve_month_day(month, day, period_end)
            amount = parse_amount(match.group("amount"))
        except ValueError:
            return None

        description = match.group("description").strip()
        if txn_date is None or not description:
            return None

        return Transaction(
            date=txn_date,
            description=description,
            amount=round(section.sign * amount, 2),
            category=categorize(description, section),
            section=section,
        )
