import os

from dotenv import load_dotenv

load_dotenv()

# Backend REST API
API_URL = os.getenv('FEEDBACK_API_URL', 'http://localhost:5001').rstrip('/')
API_TIMEOUT = float(os.getenv('FEEDBACK_API_TIMEOUT', '20'))

SECRET_KEY = os.getenv('FEEDBACK_SECRET_KEY', 'change-me')  # Replace in production
LOG_LEVEL = os.getenv('FEEDBACK_LOG_LEVEL', 'INFO')

# Instructors/subjects need this many submissions before they are ranked
MIN_INSTRUCTOR_FEEDBACKS = int(os.getenv('FEEDBACK_MIN_INSTRUCTOR_FEEDBACKS', '3'))
TOP_SUBJECTS_LIMIT = int(os.getenv('FEEDBACK_TOP_SUBJECTS', '10'))

# Backend endpoints consumed by the dashboard
ENDPOINTS = {
    'login': '/api/auth/login',
    'users': '/api/auth/users',
    'subjects': '/api/subjects',
    'feedback': '/api/feedback',
    # followed by /<student id>
    'student_feedback': '/api/feedback/student',
    'periods': '/api/feedback-periods',
    'all_periods': '/api/feedback-periods/admin',
    'active_periods': '/api/feedback-periods/active',
    # HOD and dean feedback is served per subject: <endpoint>/<subject id>
    'hod_feedback': '/api/hod/feedback',
    'hod_students': '/api/hod/students',
    'hod_subjects': '/api/hod/subjects',
    'dean_feedback': '/api/dean/feedback',
    'dean_users': '/api/dean/users',
    'dean_subjects': '/api/dean/subjects',
}

ROLES = ['student', 'faculty', 'hod', 'dean', 'admin']

# Landing page per role
ROLE_DASHBOARDS = {
    'admin': 'admin.dashboard',
    'hod': 'hod.dashboard',
    'dean': 'dean.dashboard',
    'student': 'student.subjects',
}

BRANCHES = [
    'Computer Science',
    'Electronics',
    'Mechanical',
    'Civil',
    'Electrical',
    'Information Technology',
    'Chemical',
    'Aerospace',
    'Biotechnology',
    'MCA Regular',
    'MCA DS',
]

YEARS = [1, 2, 3, 4]
TERMS = [1, 2, 3, 4, 5, 6, 7, 8]

RATING_SCALE = {
    1: 'Poor',
    2: 'Below Average',
    3: 'Average',
    4: 'Good',
    5: 'Excellent',
}

# Feedback questions: (id, text, type, category)
MIDTERM_QUESTIONS = [
    ('mt_teaching_clarity', 'How clearly does the faculty explain concepts?', 'rating', 'Teaching Quality'),
    ('mt_teaching_aids', 'How effectively does the faculty use teaching aids?', 'rating', 'Teaching Quality'),
    ('mt_learning_objectives', 'How well does the faculty clarify learning objectives?', 'rating', 'Teaching Quality'),
    ('mt_student_participation', 'How well does the faculty encourage student participation?', 'rating', 'Teaching Quality'),
    ('mt_accessibility', 'How accessible is the faculty for doubts and guidance?', 'rating', 'Faculty Engagement'),
    ('mt_feedback_timely', 'How timely is the faculty in providing feedback?', 'rating', 'Faculty Engagement'),
    ('mt_class_preparation', 'How well-prepared does the faculty come to classes?', 'rating', 'Course Delivery'),
    ('mt_overall_performance', 'How would you rate the overall performance of the faculty?', 'rating', 'Course Delivery'),
    ('mt_effective_methods', 'What teaching methods do you find most effective?', 'comment', 'Comments'),
    ('mt_improvements', 'What suggestions do you have for improvement?', 'comment', 'Comments'),
]

ENDTERM_QUESTIONS = [
    ('et_course_objectives', 'How well were the course objectives clearly defined and communicated?', 'rating', 'Course Structure'),
    ('et_syllabus_coverage', 'How comprehensive was the syllabus coverage?', 'rating', 'Course Structure'),
    ('et_content_organization', 'How well was the course content organized and sequenced?', 'rating', 'Course Structure'),
    ('et_content_relevance', 'How relevant is the course content to your academic/career goals?', 'rating', 'Course Structure'),
    ('et_learning_outcomes', 'How well were the stated learning outcomes achieved?', 'rating', 'Learning Outcomes'),
    ('et_skill_development', 'How much did this course enhance your skills in the subject area?', 'rating', 'Learning Outcomes'),
    ('et_practical_knowledge', 'How effectively did the course provide practical, applicable knowledge?', 'rating', 'Learning Outcomes'),
    ('et_assessment_fairness', 'How fair and appropriate were the assessment methods?', 'rating', 'Assessment'),
    ('et_grading_transparency', 'How transparent and consistent was the grading process?', 'rating', 'Assessment'),
    ('et_course_satisfaction', 'Overall, how satisfied are you with this course?', 'rating', 'Overall Experience'),
    ('et_course_strengths', 'What were the strongest aspects of this course?', 'comment', 'Comments'),
    ('et_course_improvements', 'What aspects of the course could be improved?', 'comment', 'Comments'),
]

FEEDBACK_TYPES = {
    'midterm': MIDTERM_QUESTIONS,
    'endterm': ENDTERM_QUESTIONS,
}

# Feedback periods (opened by the admin, one per type and term at a time)
PERIOD_TERMS = [1, 2, 3, 4]
PERIOD_STATUSES = ['draft', 'active', 'completed', 'cancelled']
# Toggle actions understood by the backend, with the past tense for messages
PERIOD_ACTIONS = {
    'activate': 'activated',
    'deactivate': 'deactivated',
    'complete': 'completed',
    'cancel': 'cancelled',
}
DEFAULT_ACADEMIC_YEAR = os.getenv('FEEDBACK_ACADEMIC_YEAR', '2024-25')
