"""restrik - A declarative HTTP resource engine for configuration-as-code tools."""

from . import specs as specs
from .cancel import CancelToken as CancelToken
from .client import Client as Client
from .context import Context as Context
from .context import StateStore as StateStore
from .datasource import DataSource as DataSource
from .ephemeral import EphemeralResource as EphemeralResource
from .errors import RestrikError as RestrikError
from .listing import list_resources as list_resources
from .locks import LockRegistry as LockRegistry
from .operation import Action as Action
from .operation import Operation as Operation
from .private import MemoryPrivateStore as MemoryPrivateStore
from .resource import Resource as Resource
from .spec import Specification as Specification
from .spec import spec as spec
from .specop import Absent as Absent
from .specop import Ensure as Ensure
from .specop import Present as Present
from .specop import SpecOp as SpecOp
from .workspace import Workspace as Workspace
