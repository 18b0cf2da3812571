from setuptools import find_packages, setup

package_name = 'elevation_mapping_coordinator'

setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    data_files=[
        ('share/ament_index/resource_index/packages',
            ['resource/' + package_name]),
        ('share/' + package_name, ['package.xml']),
        ('share/' + package_name + '/launch', ['launch/elevation_mapping.launch.py']),
    ],
    install_requires=['setuptools', 'numpy', 'gtsam'],
    zip_safe=True,
    maintainer='matheus',
    maintainer_email='matheus.laranjeira@proton.me',
    description='Elevation mapping coordinator: pose/point-cloud fusion front end for a 2.5D grid map engine',
    license='BSD-3-Clause',
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'elevation_mapping_node = elevation_mapping_coordinator.elevation_mapping_node:main',
        ],
    },
)
