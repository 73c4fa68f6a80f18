from setuptools import setup, find_packages
import re

VERSIONFILE="asyshare/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))


setup(
	# Application name:
	name="asyshare",

	# Version number (initial):
	version=verstr,

	# Packages
	packages=find_packages(exclude=["asyshare.test"]),

	# Include additional files into the package
	include_package_data=True,

	zip_safe = True,
	description="Embeddable asyncio static directory server with upload and folder creation",
	long_description="",

	python_requires='>=3.8',
	classifiers=[
		"Programming Language :: Python :: 3.8",
		"License :: OSI Approved :: MIT License",
		"Operating System :: OS Independent",
	],
	install_requires=[
		'h11>=0.14.0',
		'psutil',
	],
	extras_require={
		'test': [
			'pytest',
			'pytest-asyncio',
		],
	},
	entry_points={
		'console_scripts': [
			'asyshare = asyshare.examples.staticserver:main',
		],
	}
)
