"""
catalogue.py — The standard Sting Free training curriculum.

Four required modules, five scenario questions each. A fresh database has
no modules, and with no required modules nobody can ever be certified, so
the application seeds this catalogue at start-up (``SEED_TRAINING_CATALOGUE``)
and development builds expose ``POST /api/v1/training/seed``.

Seeding is idempotent: a store that already holds any module is left alone.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from backend.app.certification.models import QuizQuestion, TrainingModule
from backend.app.storage.base import Store

logger = logging.getLogger(__name__)


MODULES: List[TrainingModule] = [
    TrainingModule(
        id="sting-operations",
        title="Sting Operations & Legal Framework",
        order_index=1,
        description=(
            "Understanding regulatory compliance enforcement and your legal "
            "rights during sting operations"
        ),
        estimated_minutes=30,
    ),
    TrainingModule(
        id="id-verification",
        title="ID Verification Mastery",
        order_index=2,
        description="Properly checking IDs and spotting fraudulent documents",
        estimated_minutes=35,
    ),
    TrainingModule(
        id="loss-prevention",
        title="Internal Loss Prevention & Fraud Detection",
        order_index=3,
        description="Identifying and preventing employee theft, scams and internal fraud",
        estimated_minutes=28,
    ),
    TrainingModule(
        id="incident-response",
        title="Compliance Preparedness & Incident Response",
        order_index=4,
        description=(
            "Handling regulatory incidents and maintaining defensible "
            "compliance records"
        ),
        estimated_minutes=22,
    ),
]


# (question, options, correct answer, explanation) per module, in order
_QUESTIONS: Dict[str, List[Tuple[str, Tuple[str, ...], str, str]]] = {
    "sting-operations": [
        (
            "A young-looking woman orders a vodka soda and hands you an ID showing "
            "she is 22. The ID looks pristine and new, but she seems nervous. "
            "What should you do?",
            (
                "Serve her - the ID shows she's 22",
                "Refuse service - she looks suspicious",
                "Check the ID thoroughly, ask verification questions, and use your judgment",
                "Call the police immediately",
            ),
            "Check the ID thoroughly, ask verification questions, and use your judgment",
            "Nervousness warrants extra verification. If any doubt remains, refuse service.",
        ),
        (
            "During a compliance check, an ABC officer asks if you've ever served "
            "someone who might have been underage. What is the best response?",
            (
                "Say 'No, never' to avoid trouble",
                "Explain your ID checking procedures without admitting fault",
                "Refuse to answer any questions",
                "Immediately call your lawyer before answering",
            ),
            "Explain your ID checking procedures without admitting fault",
            "Describe your procedures factually without volunteering admissions.",
        ),
        (
            "Two adults and a young person enter together. The young person orders "
            "a beer while the adults watch closely but order nothing. What does "
            "this suggest?",
            (
                "Normal behavior - probably family members",
                "Possible sting operation - extra caution is warranted",
                "Suspicious - call police immediately",
                "Nothing unusual - serve the beer if they have ID",
            ),
            "Possible sting operation - extra caution is warranted",
            "Observers who do not order are a classic sting setup. Check the ID extra carefully.",
        ),
        (
            "After you refuse service to someone you suspected was underage, they "
            "get angry and threaten to 'get you fired.' How should you handle this?",
            (
                "Apologize and serve them to avoid conflict",
                "Stay calm, restate your decision politely, and get a manager if needed",
                "Argue back and defend your decision aggressively",
                "Ignore them and walk away",
            ),
            "Stay calm, restate your decision politely, and get a manager if needed",
            "A lost sale is always better than a lost license.",
        ),
        (
            "What documentation should you create immediately after refusing "
            "service due to a suspicious ID?",
            (
                "No documentation needed if you refused service",
                "Time, description, ID details, reason for refusal, and witnesses",
                "Just note the time in case they come back",
                "Only document if it becomes a compliance violation",
            ),
            "Time, description, ID details, reason for refusal, and witnesses",
            "A timestamped, detailed record proves active compliance monitoring.",
        ),
    ],
    "id-verification": [
        (
            "You notice the lamination on an ID is slightly peeling at one corner. "
            "Everything else looks normal. What should you do?",
            (
                "Ignore it - IDs get worn over time",
                "Inspect more closely for other signs of tampering",
                "Automatically refuse service",
                "Just check the birth date and move on",
            ),
            "Inspect more closely for other signs of tampering",
            "Peeling lamination can indicate re-lamination after altering details.",
        ),
        (
            "A customer born on March 15, 2004 shows you their ID on February 20, "
            "2025. Are they legally able to purchase alcohol?",
            (
                "No - they're only 20 years old",
                "Yes - they're 21 years old",
                "Maybe - depends on the state",
                "Yes - close enough to their birthday",
            ),
            "No - they're only 20 years old",
            "Their birthday has not passed yet this year, so they are still 20.",
        ),
        (
            "A customer presents a foreign passport and your venue accepts them. "
            "What should you verify?",
            (
                "Just check the birth date",
                "Birth date, photo comparison, and expiration date",
                "Refuse it - only accept US IDs",
                "Accept it without checking - passports are always valid",
            ),
            "Birth date, photo comparison, and expiration date",
            "Foreign passports need the same scrutiny as any other ID.",
        ),
        (
            "You ask a customer their birth date and they hesitate for three "
            "seconds before answering correctly. What does this mean?",
            (
                "Nothing - some people are just nervous",
                "Red flag - people know their own birth date instantly",
                "Automatic refusal - they're lying",
                "They might be tired - ignore it",
            ),
            "Red flag - people know their own birth date instantly",
            "Hesitation suggests a borrowed or fake ID. Weigh it with other signs.",
        ),
        (
            "Under UV light an ID shows features that don't match your reference "
            "guide for that state. What should you do?",
            (
                "Serve them anyway - UV lights can be unreliable",
                "Refuse service - the UV features should match",
                "Check other security features and make a judgment call",
                "Ignore UV and just check the photo",
            ),
            "Check other security features and make a judgment call",
            "UV discrepancies are concerning but not conclusive on their own.",
        ),
    ],
    "loss-prevention": [
        (
            "Your coworker serves three drinks in a row without ringing them up on "
            "the POS. What should you do?",
            (
                "Confront them immediately in front of customers",
                "Ignore it - not your problem",
                "Discreetly document what you saw and report to management privately",
                "Assume there's a good reason and don't worry about it",
            ),
            "Discreetly document what you saw and report to management privately",
            "Record the details and let management investigate.",
        ),
        (
            "Inventory shows 10 bottles of vodka should remain, but you count 6. "
            "What is the FIRST thing you should investigate?",
            (
                "Accuse the most recent bartender of stealing",
                "Check for math errors in the inventory count",
                "Compare POS sales data to bottle usage to identify discrepancies",
                "Fire everyone and start over",
            ),
            "Compare POS sales data to bottle usage to identify discrepancies",
            "Gather evidence before addressing any individual.",
        ),
        (
            "A regular always requests the same bartender and tips extremely well, "
            "but that bartender's sales are low compared to their tips. What might "
            "be happening?",
            (
                "The customer is just generous",
                "Possible overpouring or upgraded drinks not being rung properly",
                "The bartender provides excellent service",
                "Nothing suspicious",
            ),
            "Possible overpouring or upgraded drinks not being rung properly",
            "High tips with low sales is a common sign of pour or upgrade fraud.",
        ),
        (
            "A mid-shift count finds the cash drawer $47 over the POS total. What "
            "should you do?",
            (
                "Great! Keep the extra as a tip",
                "Put the extra in your pocket and don't mention it",
                "Document the overage, report to a manager, and secure the cash separately",
                "Assume you miscounted and ignore it",
            ),
            "Document the overage, report to a manager, and secure the cash separately",
            "Overages can point at void scams or short-changing customers.",
        ),
        (
            "What is the most effective way to prevent 'slam dunk' cash theft?",
            (
                "Trust your employees - don't create a hostile environment",
                "Regular inventory audits comparing bottle usage to POS sales + camera monitoring",
                "Ban all cash transactions",
                "Only hire people you know personally",
            ),
            "Regular inventory audits comparing bottle usage to POS sales + camera monitoring",
            "Inventory tracking combined with video makes the scam hard to repeat.",
        ),
    ],
    "incident-response": [
        (
            "An ABC officer arrives unannounced and asks to see your employee "
            "training records, which are in the back office. What should you do?",
            (
                "Tell them you'll get the records after they leave",
                "Refuse to show them without a warrant",
                "Politely retrieve the records immediately and provide them for review",
                "Make up an excuse about why you don't have them",
            ),
            "Politely retrieve the records immediately and provide them for review",
            "Well-kept training records demonstrate compliance and can reduce penalties.",
        ),
        (
            "Your venue was just cited for serving an underage individual during a "
            "sting. What should be your FIRST action in the next 24 hours?",
            (
                "Fire the employee who served them",
                "Secure all evidence: video footage, POS records, ID logs, and training documentation",
                "Post about it on social media to get ahead of the story",
                "Pay the fine immediately to make it go away",
            ),
            "Secure all evidence: video footage, POS records, ID logs, and training documentation",
            "Footage may be overwritten. Preserve evidence, then contact your attorney.",
        ),
        (
            "A staff member reports signs of an upcoming sting (unmarked vehicle, "
            "people with clipboards). How should you respond?",
            (
                "Ignore it - probably nothing",
                "Immediately increase ID checking vigilance and notify all staff to be extra careful",
                "Close the bar for the day",
                "Try to identify the undercover officers",
            ),
            "Immediately increase ID checking vigilance and notify all staff to be extra careful",
            "Brief all staff and log the report in the app.",
        ),
        (
            "Your venue wants to run internal 'mock sting' tests. What is the best "
            "way to implement this?",
            (
                "Don't tell anyone - surprise tests only",
                "Announce the exact date and time so staff can prepare",
                "Tell staff that random tests occur but not when, and use for training not punishment",
                "Only test new employees",
            ),
            "Tell staff that random tests occur but not when, and use for training not punishment",
            "The goal is improvement, not gotchas.",
        ),
        (
            "After a citation you implement corrective actions. How long should "
            "enhanced compliance monitoring continue?",
            (
                "Just until the fine is paid",
                "One week",
                "Enhanced monitoring should become the permanent standard",
                "Until staff complain about it",
            ),
            "Enhanced monitoring should become the permanent standard",
            "Corrections should become standard operating procedure.",
        ),
    ],
}


def questions_for(module_id: str) -> List[QuizQuestion]:
    return [
        QuizQuestion(
            id=f"{module_id}-q{n}",
            module_id=module_id,
            question_text=text,
            correct_answer=answer,
            order_index=n,
            options=options,
            explanation=explanation,
        )
        for n, (text, options, answer, explanation) in enumerate(_QUESTIONS[module_id], start=1)
    ]


async def seed_catalogue(store: Store, modules: Sequence[TrainingModule] = MODULES) -> int:
    """
    Load ``modules`` and their questions into an empty store.

    Returns the number of modules written; 0 when the store already had a
    catalogue.
    """
    existing = await store.list_modules()
    if existing:
        logger.info("Training catalogue present (%d modules); not seeding", len(existing))
        return 0

    for module in modules:
        await store.save_module(module, questions_for(module.id))
    logger.info("Seeded %d training modules", len(modules))
    return len(modules)
