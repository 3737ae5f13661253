"""Static department -> school lookup.

Departments are matched exactly (case-sensitive, after trimming the input).
Anything not listed here resolves to ``UNKNOWN_SCHOOL``.
"""
from types import MappingProxyType

UNKNOWN_SCHOOL = 'Unknown School'

SCHOOL_DEPARTMENTS = (
    ('SCHOOL OF APPLIED SCIENCE AND TECHNOLOGY', (
        'Department of Computer Science',
        'Department of Science Laboratory Technology',
        'Department of Statistics',
        'Department of Food Technology',
        'Department of Hospitality Management',
        'Department of Nutrition and Dietetics',
    )),
    ('SCHOOL OF BUSINESS STUDIES', (
        'Department of Accountancy',
        'Department of Banking and Finance',
        'Department of Business Administration and Management',
        'Department of Marketing',
        'Department of Office Technology and Management',
        'Department of Public Administration',
    )),
    ('SCHOOL OF ENGINEERING TECHNOLOGY', (
        'Department of Agricultural and Bio-Environmental Engineering',
        'Department of Civil Engineering',
        'Department of Computer Engineering',
        'Department of Electrical/Electronic Engineering',
        'Department of Mechanical Engineering',
    )),
    ('SCHOOL OF ENVIRONMENTAL STUDIES', (
        'Department of Architectural Technology',
        'Department of Building Technology',
        'Department of Estate Management and Valuation',
        'Department of Quantity Surveying',
        'Department of Surveying and Geoinformatics',
        'Department of Urban and Regional Planning',
    )),
    ('SCHOOL OF COMMUNICATION AND INFORMATION STUDIES', (
        'Department of Mass Communication',
        'Department of Library and Information Science',
    )),
)

DEPARTMENT_SCHOOLS = MappingProxyType({
    department: school
    for school, departments in SCHOOL_DEPARTMENTS
    for department in departments
})


def resolve_school(department):
    """Return the school a department belongs to, or ``UNKNOWN_SCHOOL``."""
    if not isinstance(department, str):
        return UNKNOWN_SCHOOL
    return DEPARTMENT_SCHOOLS.get(department.strip(), UNKNOWN_SCHOOL)
