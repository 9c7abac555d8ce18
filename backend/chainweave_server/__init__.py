__all__ = ["__version__"]

# Version comes from the installed distribution metadata; a bare source
# checkout reports a local dev version instead.
try:
	from importlib.metadata import version, PackageNotFoundError
	try:
		__version__ = version("chainweave-server")
	except PackageNotFoundError:
		__version__ = "0.0.0+local"
except ImportError:
	__version__ = "0.0.0+local"
