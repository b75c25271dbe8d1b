# setup.py
from setuptools import setup, find_packages

setup(
    name="influx-datasource",
    version="0.1.0",
    packages=find_packages(include=["influx_datasource", "influx_datasource.*"]),
    python_requires=">=3.9",
    install_requires=[
        "mlrun>=1.9.2",
        "influxdb-client>=1.39",
        "influxdb3-python>=0.21",
        "pandas>=1.3",
        "pyarrow>=12",
        "requests>=2.28",
        "urllib3>=1.26",
    ],
    extras_require={
        "test": [
            "pytest>=7",
            "testcontainers>=3.7",
            "docker>=6",
        ],
    },
    entry_points={
        # the dashboarding host discovers datasource backends through this group
        "datasource.backends": [
            "influxdb = influx_datasource.service:Service",
        ],
    },
)
