__version__ = "0.1.0"
__description__ = (
    "Scale-to-zero TCP proxy that wakes a single-replica Kubernetes StatefulSet on the first client connection "
    "and puts it back to sleep once clients have been idle"
)
