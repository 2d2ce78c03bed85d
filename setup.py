from setuptools import setup, find_namespace_packages

CORE_DEPS = [
    "yt-dlp",
    "requests",
    "python-dotenv",
    "colorama",
    "psutil",
    "apscheduler>=3.10,<4",
    "beautifulsoup4",
]

TEST_DEPS = [
    "pytest",
]

setup(
    name="mediadl",
    version="0.1.0",
    packages=find_namespace_packages(include=["mediadl", "mediadl.*"]),
    install_requires=CORE_DEPS,
    extras_require={
        "test": TEST_DEPS,
    },
    entry_points={
        "console_scripts": [
            "mediadl=mediadl.main:main",
        ],
    },
)
