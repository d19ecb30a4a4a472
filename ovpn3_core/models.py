"""Value objects exchanged with the daemon and the shell."""

from dataclasses import asdict, dataclass, field

from .constants import code_names


@dataclass
class Config:
    """A configuration profile stored by the daemon."""
    path: str
    name: str
    used_count: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Session:
    """A live or recently live tunnel session."""
    path: str
    major_code: int
    minor_code: int
    status_message: str
    created_at: int

    @property
    def status_name(self) -> str:
        major, minor = code_names("StatusChange", self.major_code, self.minor_code)
        return f"{major}/{minor}"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LogEvent:
    """A backend signal republished to log observers."""
    session_path: str
    signal_member: str
    group_code: int
    level_code: int
    message: str

    @property
    def group_name(self) -> str:
        return code_names(self.signal_member, self.group_code, self.level_code)[0]

    @property
    def level_name(self) -> str:
        return code_names(self.signal_member, self.group_code, self.level_code)[1]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["group_name"] = self.group_name
        data["level_name"] = self.level_name
        return data


@dataclass
class ImportRequest:
    """Parameters of a configuration import."""
    config_name: str
    config_file_path: str
    single_use: bool = False
    persistent: bool = False


@dataclass
class DisconnectReport:
    """Aggregate outcome of disconnecting every session."""
    disconnected: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "disconnected": list(self.disconnected),
            "failed": {path: str(error) for path, error in self.failed.items()},
        }
