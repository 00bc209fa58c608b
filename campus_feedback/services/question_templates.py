from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from campus_feedback.errors import ValidationError
from campus_feedback.models.feedback import ANSWER_COMMENT, ANSWER_RATING, FEEDBACK_ENDTERM, FEEDBACK_MIDTERM

RATING_SCALE = {
    1: "Poor",
    2: "Below Average",
    3: "Average",
    4: "Good",
    5: "Excellent",
}


@dataclass(frozen=True)
class TemplateQuestion:
    id: str
    text: str
    type: str
    category: str
    required: bool = True


def _r(qid, text, category):
    return TemplateQuestion(qid, text, ANSWER_RATING, category, True)


def _c(qid, text):
    return TemplateQuestion(qid, text, ANSWER_COMMENT, "Comments", False)


# Faculty-focused: 8 rating + 2 comment questions
MIDTERM_QUESTIONS = (
    _r("mt_teaching_clarity", "How clearly does the faculty explain concepts?", "Teaching Quality"),
    _r("mt_teaching_aids", "How effectively does the faculty use teaching aids?", "Teaching Quality"),
    _r("mt_learning_objectives", "How well does the faculty clarify learning objectives?", "Teaching Quality"),
    _r("mt_student_participation", "How well does the faculty encourage student participation?", "Teaching Quality"),
    _r("mt_accessibility", "How accessible is the faculty for doubts and guidance?", "Faculty Engagement"),
    _r("mt_feedback_timely", "How timely is the faculty in providing feedback?", "Faculty Engagement"),
    _r("mt_class_preparation", "How well-prepared does the faculty come to classes?", "Course Delivery"),
    _r("mt_overall_performance", "How would you rate the overall performance of the faculty?", "Course Delivery"),
    _c("mt_effective_methods", "What teaching methods do you find most effective?"),
    _c("mt_improvements", "What suggestions do you have for improvement?"),
)

# Course content and overall experience
ENDTERM_QUESTIONS = (
    _r("et_course_objectives", "How well were the course objectives clearly defined and communicated?", "Course Structure"),
    _r("et_syllabus_coverage", "How comprehensive was the syllabus coverage?", "Course Structure"),
    _r("et_content_organization", "How well was the course content organized and sequenced?", "Course Structure"),
    _r("et_content_difficulty", "Was the course content at an appropriate difficulty level?", "Course Structure"),
    _r("et_content_relevance", "How relevant is the course content to your academic/career goals?", "Course Structure"),
    _r("et_learning_outcomes", "How well were the stated learning outcomes achieved?", "Learning Outcomes"),
    _r("et_skill_development", "How much did this course enhance your skills in the subject area?", "Learning Outcomes"),
    _r("et_critical_thinking", "How well did the course develop your critical thinking abilities?", "Learning Outcomes"),
    _r("et_practical_knowledge", "How effectively did the course provide practical, applicable knowledge?", "Learning Outcomes"),
    _r("et_textbook_quality", "How helpful were the prescribed textbooks and reading materials?", "Resources"),
    _r("et_supplementary_materials", "How useful were the supplementary materials (handouts, videos, etc.)?", "Resources"),
    _r("et_lab_practical", "How effective were the laboratory/practical sessions (if applicable)?", "Resources"),
    _r("et_online_resources", "How useful were the online resources and digital materials?", "Resources"),
    _r("et_assessment_fairness", "How fair and appropriate were the assessment methods?", "Assessment"),
    _r("et_assignment_relevance", "How relevant were the assignments to the course objectives?", "Assessment"),
    _r("et_exam_preparation", "How well did the course prepare you for examinations?", "Assessment"),
    _r("et_grading_transparency", "How transparent and consistent was the grading process?", "Assessment"),
    _r("et_course_satisfaction", "Overall, how satisfied are you with this course?", "Overall Experience"),
    _r("et_recommend_course", "How likely are you to recommend this course to other students?", "Overall Experience"),
    _r("et_workload_appropriate", "Was the course workload appropriate for the credit hours?", "Overall Experience"),
    _r("et_expectations_met", "How well did the course meet your initial expectations?", "Overall Experience"),
    _r("et_future_learning", "How well has this course prepared you for future courses in this area?", "Overall Experience"),
    _c("et_course_strengths", "What were the strongest aspects of this course? What made it valuable to your learning?"),
    _c("et_course_improvements", "What aspects of the course could be improved? Please provide specific suggestions."),
    _c("et_additional_topics", "Are there any topics you feel should be added to or removed from the course content?"),
    _c("et_overall_experience", "Please share your overall experience with this course and any additional feedback."),
)

_BY_TYPE = {
    FEEDBACK_MIDTERM: MIDTERM_QUESTIONS,
    FEEDBACK_ENDTERM: ENDTERM_QUESTIONS,
}


def questions_for(feedback_type: str) -> tuple:
    try:
        return _BY_TYPE[feedback_type]
    except KeyError:
        raise ValidationError(f"Unknown feedback type {feedback_type!r}", field="feedback_type") from None


def questions_by_category(questions) -> Dict[str, List[TemplateQuestion]]:
    grouped: Dict[str, List[TemplateQuestion]] = {}
    for q in questions:
        grouped.setdefault(q.category, []).append(q)
    return grouped


def category_for(feedback_type: str, question_text: str) -> Optional[str]:
    """Category of a template question by its text; None for custom questions."""
    for q in _BY_TYPE.get(feedback_type, ()):
        if q.text == question_text:
            return q.category
    return None
