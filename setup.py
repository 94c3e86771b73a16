# Copyright 2016-2025, Pulumi Corporation.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""AWSGuard: Pulumi policies for AWS best practices."""

from setuptools import setup, find_packages

VERSION = "1.0.0"

def readme():
    try:
        with open('README.md', encoding='utf-8') as f:
            return f.read()
    except FileNotFoundError:
        return "Pulumi AWSGuard policy pack - Development Version"

setup(name='pulumi_awsguard',
      version=VERSION,
      description='Pulumi policies for AWS best practices',
      long_description=readme(),
      long_description_content_type='text/markdown',
      url='https://github.com/pulumi/pulumi-awsguard',
      license='Apache 2.0',
      packages=find_packages(exclude=("test*",)),
      python_requires='>=3.9',
      install_requires=[
          'pulumi>=3.157.0,<4.0.0',
          'protobuf>=4.21',
          'grpcio>=1.66.2',
          'boto3>=1.28',
          'tenacity>=8.2',
      ],
      extras_require={
          'test': [
              'moto>=5.0',
          ],
      },
      zip_safe=False)
