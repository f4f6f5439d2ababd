from slicestem.core import config
