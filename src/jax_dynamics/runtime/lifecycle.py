"""Runtime lifecycle: bring the numeric runtime up, keep it single threaded,
and tear it down exactly once.

There is one current runtime per process. Every factory and kernel entry
point calls `require_ready()` so that no computation happens before
`Runtime.initialize` completes or after `Runtime.shutdown` begins.
"""

import atexit
import contextlib
import enum
import gc
import logging
import os
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

import jax
from threadpoolctl import threadpool_limits

from ..errors import ConfigurationError, RuntimeStateError

logger = logging.getLogger(__name__)

# Thread-count variables honoured by the BLAS/LAPACK builds numpy ships with.
_BLAS_THREAD_VARIABLES = (
    "OMP_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
    "MKL_NUM_THREADS",
    "VECLIB_MAXIMUM_THREADS",
)


class Phase(enum.Enum):
    CREATED = "created"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class RuntimeConfig:
    """Settings applied by `Runtime.initialize`.

    Attributes:
        num_threads: Thread count the linear-algebra backends are pinned to.
        image: Optional directory holding precompiled kernels. It is used as
               jax's persistent compilation cache and must already exist.
    """
    num_threads: int = 1
    image: Optional[str] = None


_lock = threading.Lock()
_current: Optional["Runtime"] = None


class Runtime:
    """An embedded numeric runtime with an explicit init/teardown window."""

    def __init__(self, config: RuntimeConfig = RuntimeConfig()):
        if config.num_threads < 1:
            raise ConfigurationError(f"num_threads must be positive, got {config.num_threads}")
        self.config = config
        self.phase = Phase.CREATED
        self.exit_code: Optional[int] = None
        self._thread_limits = None

    @property
    def ready(self) -> bool:
        return self.phase is Phase.READY

    def initialize(self) -> "Runtime":
        global _current
        with _lock:
            if self.phase is not Phase.CREATED:
                raise RuntimeStateError(f"Runtime cannot be initialized from phase {self.phase.value}")
            if _current is not None:
                raise RuntimeStateError("Another runtime is already active in this process")

            if self.config.image is not None:
                self._load_image(self.config.image)
            self._pin_threads()

            self.phase = Phase.READY
            _current = self
        atexit.register(self.shutdown)
        logger.debug("Runtime initialized (threads=%d, image=%s)",
                     self.config.num_threads, self.config.image)
        return self

    def shutdown(self, exit_code: int = 0) -> None:
        """Run the finalization hook. Calls after the first one do nothing."""
        global _current
        with _lock:
            if self.phase is not Phase.READY:
                return
            self.phase = Phase.SHUTTING_DOWN
            self.exit_code = exit_code
        try:
            jax.clear_caches()
        finally:
            if self._thread_limits is not None:
                self._thread_limits.restore_original_limits()
                self._thread_limits = None
            with _lock:
                if _current is self:
                    _current = None
                self.phase = Phase.TERMINATED
            atexit.unregister(self.shutdown)
            logger.debug("Runtime shut down with exit code %d", exit_code)

    def __enter__(self) -> "Runtime":
        return self.initialize()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(0 if exc_type is None else 1)

    def _pin_threads(self) -> None:
        n = str(self.config.num_threads)
        for name in _BLAS_THREAD_VARIABLES:
            os.environ[name] = n

        flags = os.environ.get("XLA_FLAGS", "").split()
        flags = [f for f in flags if not f.startswith("--xla_cpu_multi_thread_eigen")]
        flags.append(f"--xla_cpu_multi_thread_eigen={str(self.config.num_threads > 1).lower()}")
        os.environ["XLA_FLAGS"] = " ".join(flags)

        # numpy has already loaded its BLAS by now, so the variables above only
        # reach libraries loaded later; limit the loaded ones directly.
        self._thread_limits = threadpool_limits(limits=self.config.num_threads)

    @staticmethod
    def _load_image(image: str) -> None:
        if not os.path.isdir(image):
            raise ConfigurationError(f"Bootstrap image directory not found: {image}")
        jax.config.update("jax_compilation_cache_dir", image)
        jax.config.update("jax_persistent_cache_min_compile_time_secs", 0.0)
        logger.info("Using precompiled kernels from %s", image)


def current() -> Runtime:
    """Return the active runtime.

    Raises:
        RuntimeStateError: if no runtime is initialized.
    """
    runtime = _current
    if runtime is None or not runtime.ready:
        raise RuntimeStateError("No initialized runtime; call Runtime.initialize() first")
    return runtime


def require_ready() -> None:
    current()


_suspended = False


@contextlib.contextmanager
def collector_suspended() -> Iterator[None]:
    """Disable automatic garbage collection for the duration of the block.

    Borrowed buffers stay valid inside the block. The collector's previous
    state is restored on every exit path. Nesting is not allowed.
    """
    global _suspended
    require_ready()
    if _suspended:
        raise RuntimeStateError("Collector is already suspended")
    was_enabled = gc.isenabled()
    _suspended = True
    gc.disable()
    try:
        yield
    finally:
        if was_enabled:
            gc.enable()
        _suspended = False


def collector_is_suspended() -> bool:
    return _suspended
