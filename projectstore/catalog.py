from dataclasses import dataclass, asdict, field

ALL = 'all'


@dataclass(frozen=True)
class Project:
    """A purchasable project write-up, as exposed by the catalog."""
    id: str
    name: str
    department: str
    school: str
    description: str
    price: int
    asset_ref: str
    status: str = 'active'

    @property
    def category(self):
        return self.department

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data['id']),
            name=data['name'],
            department=data.get('department', ''),
            school=data.get('school', ''),
            description=data.get('description', ''),
            price=int(data['price']),
            asset_ref=data['asset_ref'],
            status=data.get('status', 'active'),
        )


@dataclass(frozen=True)
class School:
    name: str
    departments: tuple = field(default_factory=tuple)


def _is_unset(value):
    return value is None or value == '' or value == ALL


class CatalogIndex:
    """Holds one normalized catalog snapshot and answers filter queries.

    School and department are independent exact-match predicates; keeping the
    department choice consistent with the selected school is up to the caller
    (see ``departments_for``).
    """

    def __init__(self, projects=(), schools=()):
        self._projects = tuple(projects)
        self._schools = tuple(schools)

    def __len__(self):
        return len(self._projects)

    def __iter__(self):
        return iter(self._projects)

    @property
    def projects(self):
        return list(self._projects)

    @property
    def schools(self):
        return list(self._schools)

    def get(self, project_id):
        for project in self._projects:
            if project.id == project_id:
                return project
        return None

    def query(self, school=None, department=None, query=None):
        """Return the projects matching every supplied predicate, in catalog order."""
        term = (query or '').strip().lower()
        results = []
        for project in self._projects:
            if not _is_unset(school) and project.school != school:
                continue
            if not _is_unset(department) and project.department != department:
                continue
            if term and term not in _search_text(project):
                continue
            results.append(project)
        return results

    def departments_for(self, school=None):
        if _is_unset(school):
            return [d for s in self._schools for d in s.departments]
        for candidate in self._schools:
            if candidate.name == school:
                return list(candidate.departments)
        return []


def _search_text(project):
    return '\n'.join((project.name, project.department, project.school, project.description)).lower()
