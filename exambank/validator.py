"""
Validation Engine
=================
Post-parse validation and reporting for text banks.

After parsing a bank, generates a report of:
    - Total Questions Detected
    - Structured Successfully (text plus at least two options)
    - Missing Question Numbers (gaps in each topic's sequence)
    - Duplicate Question Numbers (per topic)
    - Questions Missing Options
    - Questions Missing Text
    - Anomaly breakdown by type

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict

from .models import (
    Anomaly,
    AnomalyType,
    CanonicalQuestion,
    ValidationReport,
)

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates parsed bank questions and produces a report.
    """

    def validate(
        self,
        questions: list[CanonicalQuestion],
    ) -> ValidationReport:
        """
        Run full validation on parsed questions.

        Duplicate numbers within a topic are also attached to the affected
        questions as anomalies.

        Args:
            questions: Questions from one or more bank files.

        Returns:
            ValidationReport with all detected issues.
        """
        report = ValidationReport()

        if not questions:
            logger.warning("No questions to validate")
            return report

        report.total_questions_detected = len(questions)

        by_topic: dict[str, list[CanonicalQuestion]] = defaultdict(list)
        for q in questions:
            by_topic[q.topic].append(q)

        for topic, topic_questions in sorted(by_topic.items()):
            numbers = [q.question_number for q in topic_questions]
            counts = Counter(numbers)

            duplicates = sorted(n for n, c in counts.items() if c > 1)
            if duplicates:
                report.duplicate_question_numbers[topic] = duplicates
                for q in topic_questions:
                    if q.question_number in duplicates:
                        q.anomalies.append(Anomaly(
                            type=AnomalyType.DUPLICATE_QUESTION_NUMBER,
                            severity=40,
                            message=f"Question number {q.question_number} "
                                    f"appears {counts[q.question_number]} times",
                        ))

            expected = set(range(min(numbers), max(numbers) + 1))
            missing = sorted(expected - set(numbers))
            if missing:
                report.missing_question_numbers[topic] = missing

        structured_count = 0
        anomaly_counts: dict[str, int] = {}

        for q in questions:
            if q.is_complete:
                structured_count += 1
            if q.option_count < 2:
                report.questions_missing_options.append(q.id)
            if not q.content.strip():
                report.questions_missing_text.append(q.id)

            for anomaly in q.anomalies:
                key = anomaly.type.value
                anomaly_counts[key] = anomaly_counts.get(key, 0) + 1

        report.structured_successfully = structured_count
        report.anomaly_breakdown = anomaly_counts

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(
            f"Total Questions Detected: {report.total_questions_detected}"
        )
        logger.info(
            f"Structured Successfully: {report.structured_successfully} "
            f"({report.success_rate}%)"
        )
        logger.info(
            f"Missing Question Numbers: "
            f"{sum(len(v) for v in report.missing_question_numbers.values())}"
        )
        logger.info(
            f"Duplicate Question Numbers: "
            f"{sum(len(v) for v in report.duplicate_question_numbers.values())}"
        )
        logger.info(
            f"Questions Missing Options: "
            f"{len(report.questions_missing_options)}"
        )
        logger.info(
            f"Questions Missing Text: {len(report.questions_missing_text)}"
        )

        if report.anomaly_breakdown:
            logger.info("Anomaly Breakdown:")
            for anomaly_type, count in sorted(
                report.anomaly_breakdown.items()
            ):
                logger.info(f"  • {anomaly_type}: {count}")

        logger.info("=" * 60)

        return report
