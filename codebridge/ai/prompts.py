JSON_ONLY = "Output ONLY valid JSON. No markdown tags, no backticks, no preamble."

PROMPTS = {
    "recommend": """
You are an expert learning advisor. Based on the following student information, provide 5 personalized study recommendations.

Course: {course_title}
Student Progress: {progress}% complete
Recent Grades: {recent_grades}
Struggling Areas: {struggling_areas}

{json_only}
Schema: {{"recommendations": [{{"title": "...", "description": "...", "priority": "high|medium|low", "category": "study_habit|resource|practice|concept_review", "estimated_time": "minutes"}}]}}
""",
    "resources": """
You are an expert educator. Recommend 5 high-quality learning resources for a student studying:

Course: {course_title}
Description: {course_description}
Current Topic: {current_topic}

Provide a mix of textbooks, online courses, videos, documentation and practice platforms.

{json_only}
Schema: {{"resources": [{{"title": "...", "type": "textbook|video|course|documentation|practice", "author": "...", "url": "URL or 'Search online'", "description": "...", "difficulty": "beginner|intermediate|advanced", "is_free": true}}]}}
""",
    "performance": """
You are an educational analyst providing constructive feedback.
Analyze the following student performance data and provide insights:

{performance_data}

{json_only}
Schema: {{"overall_performance": "excellent|good|average|needs_improvement", "strengths": ["..."], "weaknesses": ["..."], "improvement_areas": ["..."], "motivational_message": "...", "next_steps": ["..."]}}
""",
    "study_plan": """
You are an expert learning strategist. Create a personalized study plan for:

Course: {course_title}
Description: {course_description}
Syllabus: {syllabus}
Student Level: {level}
Available Hours/Week: {hours_per_week}

{json_only}
Schema: {{"total_weeks": 0, "weekly_plan": [{{"week": 1, "topics": ["..."], "goals": ["..."], "study_hours": 0, "activities": ["..."]}}], "tips": ["..."]}}
""",
    "ask": """
You are a helpful tutor for the course: {course_context}. Provide a clear, educational answer in plain text.

Question: {question}
""",
    "pre_grade": """
You are a fair and constructive teaching assistant. Pre-grade the following student submission based on the assignment criteria.

Assignment: {assignment_title}
{assignment_description}

Maximum score: {max_score}

Rubric:
{rubric}

Student Submission:
{submission_text}

{json_only}
Schema: {{"score": 0, "feedback": "detailed constructive feedback", "strengths": ["..."], "improvements": ["..."], "confidence": 0}}
The score must be between 0 and {max_score}; confidence is 0-100.
""",
}


def render(name: str, **values) -> str:
    return PROMPTS[name].format(json_only=JSON_ONLY, **values).strip()
