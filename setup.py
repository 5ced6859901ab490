from setuptools import setup, find_packages

setup(
    name='langgraph_checkpoint_kv',
    version='0.2.0',
    author='Ryan McCormack',
    author_email='ryan@sardine.ai',
    description='Sorted key-value write records and a Datastore saver for LangGraph checkpoints',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    url='https://github.com/rynmccrmck/langgraph-checkpoint-datstore',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'google-cloud-datastore>=2.0.0',
        'langchain-core>=0.3.0',
        'langgraph>=0.2.53',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.10',
)
