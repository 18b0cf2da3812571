from launch import LaunchDescription
from launch.actions import DeclareLaunchArgument
from launch.substitutions import LaunchConfiguration
from launch_ros.actions import Node


def generate_launch_description():
    map_frame = LaunchConfiguration("map_frame")

    return LaunchDescription([
        DeclareLaunchArgument("map_frame", default_value="map"),

        # Elevation mapping coordinator
        Node(
            package="elevation_mapping_coordinator",
            executable="elevation_mapping_node",
            name="elevation_mapping",
            output="screen",
            parameters=[{"pointcloud_topics": ["/points"],
                         "pose_topic": "/pose",
                         "map_frame": map_frame,
                         "position_lowpass_alpha": 0.2,
                         "orientation_lowpass_alpha": 0.2,
                         "recordable_fps": 3.0,
                         "enable_pointcloud_publishing": False,
                         "resolution": 0.04,
                         "map_length": 8.0}],
        ),

        # Static TF map -> odom (identity for now)
        Node(
            package="tf2_ros",
            executable="static_transform_publisher",
            name="map_to_odom_tf",
            output="screen",
            arguments=["--frame-id", map_frame, "--child-frame-id", "odom"],
        ),
    ])
