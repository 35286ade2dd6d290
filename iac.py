#!/usr/bin/env python3
"""
Boto3 IAC automation to deploy a web server behind an Application Load Balancer
inside an existing VPC

Creates public and private subnets in two availability zones, an Internet
Gateway (reused when the VPC already has one), a NAT Gateway for private egress,
security groups, one EC2 instance running the placeholder app and an ALB that
forwards HTTP traffic to it.

Usage:
    # Option 1: Edit the configuration constants below, then
    python iac.py

    # Option 2: Set environment variables
    export VPC_ID=vpc-xxxxx
    export KEY_NAME=my-key-pair
    python iac.py

    # Option 3: Pass the VPC ID as command line argument
    python iac.py vpc-xxxxx

Every run creates new resources. Nothing is cleaned up if a step fails.
"""

import boto3
import ipaddress
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional
from botocore.exceptions import ClientError, WaiterError

# AWS Configuration
REGION = os.getenv("AWS_DEFAULT_REGION", "us-east-1")
VPC_ID = os.getenv("VPC_ID", "vpc-xxxxxxxxxxxxxxxxx")
INSTANCE_TYPE = os.getenv("INSTANCE_TYPE", "t3.micro")
KEY_NAME = os.getenv("KEY_NAME", "my-key-pair")
APP_PORT = int(os.getenv("APP_PORT", "8080"))

# Resource naming
NAME_PREFIX = os.getenv("NAME_PREFIX", "web-stack")
ALB_NAME = f"{NAME_PREFIX}-alb"
TARGET_GROUP_NAME = f"{NAME_PREFIX}-tg"

# Network layout, one subnet of each kind per availability zone
PUBLIC_SUBNET_CIDRS = ["10.0.1.0/24", "10.0.2.0/24"]
PRIVATE_SUBNET_CIDRS = ["10.0.11.0/24", "10.0.12.0/24"]
LISTENER_PORT = 80

AMI_NAME_PATTERN = "al2023-ami-2023.*-x86_64"
APP_SOURCE = Path(__file__).with_name("app.py")


def tag_specification(resource_type: str, name: str) -> Dict:
    """Build a TagSpecifications entry with the Name and Project tags"""
    return {
        "ResourceType": resource_type,
        "Tags": [
            {"Key": "Name", "Value": name},
            {"Key": "Project", "Value": NAME_PREFIX}
        ]
    }


def build_user_data(port: int = APP_PORT, app_name: str = NAME_PREFIX) -> str:
    """Boot script that installs the web server and serves the placeholder app"""
    app_source = APP_SOURCE.read_text()
    # Quoted heredoc delimiter: the app source is written byte for byte
    return f"""#!/bin/bash
set -euxo pipefail
dnf install -y python3-pip
pip3 install fastapi pydantic uvicorn
mkdir -p /opt/{app_name}
cat > /opt/{app_name}/app.py <<'APP_EOF'
{app_source}
APP_EOF
cat > /etc/systemd/system/{app_name}.service <<'UNIT_EOF'
[Unit]
Description={app_name} placeholder web server
After=network-online.target

[Service]
WorkingDirectory=/opt/{app_name}
Environment=APP_NAME={app_name}
ExecStart=/usr/bin/python3 -m uvicorn app:app --host 0.0.0.0 --port {port}
Restart=always

[Install]
WantedBy=multi-user.target
UNIT_EOF
systemctl daemon-reload
systemctl enable --now {app_name}.service
"""


class AWSInfrastructure:
    def __init__(self, region: str = REGION):
        """Initialize AWS clients"""
        self.region = region
        self.ec2 = boto3.client("ec2", region_name=region)
        self.elbv2 = boto3.client("elbv2", region_name=region)

    def get_vpc_info(self, vpc_id: str) -> Optional[Dict]:
        """Get VPC information including CIDR blocks"""
        try:
            response = self.ec2.describe_vpcs(VpcIds=[vpc_id])
            if not response["Vpcs"]:
                return None
            vpc = response["Vpcs"][0]
            return {
                "VpcId": vpc["VpcId"],
                "CidrBlock": vpc["CidrBlock"],
                "CidrBlockAssociationSet": vpc.get("CidrBlockAssociationSet", [])
            }
        except ClientError as e:
            print(f"Error getting VPC info: {e}")
            return None

    def validate_vpc(self, vpc_id: str) -> Optional[Dict]:
        """Make sure the target VPC exists before anything is created"""
        vpc_info = self.get_vpc_info(vpc_id)
        if not vpc_info:
            print(f"✗ VPC {vpc_id} not found in {self.region}")
            print("  Set VPC_ID at the top of iac.py, export VPC_ID, or pass it as the first argument")
            return None
        print(f"✓ Found VPC: {vpc_info['VpcId']} ({vpc_info['CidrBlock']})")
        return vpc_info

    @staticmethod
    def vpc_cidr_blocks(vpc_info: Dict) -> List[str]:
        """Primary CIDR block plus any associated secondary blocks"""
        vpc_cidrs = [vpc_info["CidrBlock"]]
        for assoc in vpc_info.get("CidrBlockAssociationSet", []):
            if assoc.get("CidrBlockState", {}).get("State") == "associated":
                cidr = assoc.get("CidrBlock")
                if cidr and cidr not in vpc_cidrs:
                    vpc_cidrs.append(cidr)
        return vpc_cidrs

    def check_subnet_cidrs(self, vpc_info: Dict, cidrs: List[str]) -> bool:
        """Check that every subnet CIDR lies inside one of the VPC CIDR blocks"""
        vpc_networks = [ipaddress.ip_network(c) for c in self.vpc_cidr_blocks(vpc_info)]
        fits = True
        for cidr in cidrs:
            subnet = ipaddress.ip_network(cidr)
            if not any(subnet.subnet_of(network) for network in vpc_networks):
                print(f"✗ Subnet CIDR {cidr} is outside the VPC CIDR blocks {[str(n) for n in vpc_networks]}")
                fits = False
        return fits

    def get_available_zones(self) -> List[str]:
        """Get available availability zones in the region"""
        try:
            response = self.ec2.describe_availability_zones(
                Filters=[{"Name": "state", "Values": ["available"]}]
            )
            return [az["ZoneName"] for az in response["AvailabilityZones"]]
        except ClientError as e:
            print(f"Error getting availability zones: {e}")
            return []

    def create_subnet(
        self,
        vpc_id: str,
        cidr_block: str,
        availability_zone: str,
        name: str,
        public: bool = False
    ) -> Optional[str]:
        """Create a new subnet in the VPC"""
        try:
            print(f"Creating subnet: {name} ({cidr_block}) in {availability_zone}")
            response = self.ec2.create_subnet(
                VpcId=vpc_id,
                CidrBlock=cidr_block,
                AvailabilityZone=availability_zone,
                TagSpecifications=[tag_specification("subnet", name)]
            )
            subnet_id = response["Subnet"]["SubnetId"]
            if public:
                self.ec2.modify_subnet_attribute(
                    SubnetId=subnet_id,
                    MapPublicIpOnLaunch={"Value": True}
                )
            print(f"✓ Subnet created: {subnet_id}")
            return subnet_id
        except ClientError as e:
            print(f"Error creating subnet: {e}")
            return None

    def ensure_internet_gateway(self, vpc_id: str) -> Optional[str]:
        """Reuse the Internet Gateway attached to the VPC, or create and attach one"""
        try:
            response = self.ec2.describe_internet_gateways(
                Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}]
            )
            gateways = response.get("InternetGateways", [])
            if gateways:
                igw_id = gateways[0]["InternetGatewayId"]
                print(f"✓ Internet Gateway already attached: {igw_id}")
                return igw_id

            print("Creating Internet Gateway")
            response = self.ec2.create_internet_gateway(
                TagSpecifications=[tag_specification("internet-gateway", f"{NAME_PREFIX}-igw")]
            )
            igw_id = response["InternetGateway"]["InternetGatewayId"]
            self.ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
            print(f"✓ Internet Gateway created and attached: {igw_id}")
            return igw_id
        except ClientError as e:
            print(f"Error setting up Internet Gateway: {e}")
            return None

    def create_route_table(
        self,
        vpc_id: str,
        name: str,
        subnet_ids: List[str],
        gateway_id: Optional[str] = None,
        nat_gateway_id: Optional[str] = None
    ) -> Optional[str]:
        """Create a route table with a default route and associate it with subnets"""
        try:
            print(f"Creating route table: {name}")
            response = self.ec2.create_route_table(
                VpcId=vpc_id,
                TagSpecifications=[tag_specification("route-table", name)]
            )
            route_table_id = response["RouteTable"]["RouteTableId"]

            route = {"RouteTableId": route_table_id, "DestinationCidrBlock": "0.0.0.0/0"}
            if gateway_id:
                route["GatewayId"] = gateway_id
            if nat_gateway_id:
                route["NatGatewayId"] = nat_gateway_id
            self.ec2.create_route(**route)

            for subnet_id in subnet_ids:
                self.ec2.associate_route_table(RouteTableId=route_table_id, SubnetId=subnet_id)
            print(f"✓ Route table created: {route_table_id} (associated with {len(subnet_ids)} subnet(s))")
            return route_table_id
        except ClientError as e:
            print(f"Error creating route table: {e}")
            return None

    def allocate_elastic_ip(self, name: str) -> Optional[str]:
        """Allocate an Elastic IP for the NAT Gateway"""
        try:
            print("Allocating Elastic IP")
            response = self.ec2.allocate_address(
                Domain="vpc",
                TagSpecifications=[tag_specification("elastic-ip", name)]
            )
            allocation_id = response["AllocationId"]
            print(f"✓ Elastic IP allocated: {allocation_id} ({response.get('PublicIp')})")
            return allocation_id
        except ClientError as e:
            print(f"Error allocating Elastic IP: {e}")
            return None

    def create_nat_gateway(self, subnet_id: str, allocation_id: str) -> Optional[str]:
        """Create a NAT Gateway in a public subnet"""
        try:
            print(f"Creating NAT Gateway in {subnet_id}")
            response = self.ec2.create_nat_gateway(
                SubnetId=subnet_id,
                AllocationId=allocation_id,
                TagSpecifications=[tag_specification("natgateway", f"{NAME_PREFIX}-nat")]
            )
            nat_id = response["NatGateway"]["NatGatewayId"]
            print(f"✓ NAT Gateway created: {nat_id}")
            return nat_id
        except ClientError as e:
            print(f"Error creating NAT Gateway: {e}")
            return None

    def wait_for_nat_gateway(self, nat_id: str) -> bool:
        """Wait for the NAT Gateway to become available"""
        print("Waiting for NAT Gateway to become available...")
        try:
            self.ec2.get_waiter("nat_gateway_available").wait(NatGatewayIds=[nat_id])
            print("✓ NAT Gateway is available")
            return True
        except (ClientError, WaiterError) as e:
            print(f"Error waiting for NAT Gateway: {e}")
            return False

    def create_security_group(self, vpc_id: str, name: str, description: str) -> Optional[str]:
        """Create a security group in the VPC"""
        try:
            print(f"Creating security group: {name}")
            response = self.ec2.create_security_group(
                GroupName=name,
                Description=description,
                VpcId=vpc_id,
                TagSpecifications=[tag_specification("security-group", name)]
            )
            group_id = response["GroupId"]
            print(f"✓ Security group created: {group_id}")
            return group_id
        except ClientError as e:
            print(f"Error creating security group: {e}")
            return None

    def authorize_ingress(
        self,
        group_id: str,
        port: int,
        cidr: Optional[str] = None,
        source_group_id: Optional[str] = None
    ) -> bool:
        """Allow inbound TCP on a port from a CIDR range or another security group"""
        permission = {"IpProtocol": "tcp", "FromPort": port, "ToPort": port}
        if cidr:
            permission["IpRanges"] = [{"CidrIp": cidr}]
            source = cidr
        else:
            permission["UserIdGroupPairs"] = [{"GroupId": source_group_id}]
            source = source_group_id
        try:
            self.ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=[permission])
            print(f"  ✓ {group_id}: allow tcp/{port} from {source}")
            return True
        except ClientError as e:
            print(f"Error authorizing ingress on {group_id}: {e}")
            return False

    def get_latest_ami(self) -> Optional[str]:
        """Find the newest Amazon Linux 2023 AMI in the region"""
        try:
            response = self.ec2.describe_images(
                Owners=["amazon"],
                Filters=[
                    {"Name": "name", "Values": [AMI_NAME_PATTERN]},
                    {"Name": "state", "Values": ["available"]},
                    {"Name": "architecture", "Values": ["x86_64"]}
                ]
            )
            images = sorted(response["Images"], key=lambda image: image["CreationDate"], reverse=True)
            if not images:
                print(f"✗ No AMI matching {AMI_NAME_PATTERN} found in {self.region}")
                return None
            ami_id = images[0]["ImageId"]
            print(f"✓ Using AMI: {ami_id} ({images[0].get('Name', '')})")
            return ami_id
        except ClientError as e:
            print(f"Error looking up AMI: {e}")
            return None

    def launch_instance(
        self,
        ami_id: str,
        subnet_id: str,
        security_group_id: str,
        user_data: str
    ) -> Optional[str]:
        """Launch the web server instance"""
        try:
            name = f"{NAME_PREFIX}-web"
            print(f"Launching instance: {name} ({INSTANCE_TYPE}) in {subnet_id}")
            response = self.ec2.run_instances(
                ImageId=ami_id,
                InstanceType=INSTANCE_TYPE,
                KeyName=KEY_NAME,
                MinCount=1,
                MaxCount=1,
                SubnetId=subnet_id,
                SecurityGroupIds=[security_group_id],
                UserData=user_data,
                TagSpecifications=[tag_specification("instance", name)]
            )
            instance_id = response["Instances"][0]["InstanceId"]
            print(f"✓ Instance launched: {instance_id}")
            return instance_id
        except ClientError as e:
            print(f"Error launching instance: {e}")
            return None

    def wait_for_instance_running(self, instance_id: str) -> bool:
        """Wait for the instance to reach the running state"""
        print("Waiting for instance to be running...")
        try:
            self.ec2.get_waiter("instance_running").wait(InstanceIds=[instance_id])
            print("✓ Instance is running")
            return True
        except (ClientError, WaiterError) as e:
            print(f"Error waiting for instance: {e}")
            return False

    def create_application_load_balancer(self, subnets: List[str], security_group_id: str) -> Optional[str]:
        """Create an internet-facing Application Load Balancer"""
        try:
            print(f"Creating Application Load Balancer: {ALB_NAME}")
            response = self.elbv2.create_load_balancer(
                Name=ALB_NAME,
                Type="application",
                Scheme="internet-facing",
                Subnets=subnets,
                SecurityGroups=[security_group_id],
                Tags=[
                    {"Key": "Name", "Value": ALB_NAME},
                    {"Key": "Project", "Value": NAME_PREFIX}
                ]
            )
            alb_arn = response["LoadBalancers"][0]["LoadBalancerArn"]
            print(f"✓ Application Load Balancer created: {alb_arn}")
            return alb_arn
        except ClientError as e:
            print(f"Error creating ALB: {e}")
            return None

    def create_target_group(self, vpc_id: str, port: int = APP_PORT) -> Optional[str]:
        """Create a target group for the load balancer"""
        try:
            print(f"Creating Target Group: {TARGET_GROUP_NAME}")
            response = self.elbv2.create_target_group(
                Name=TARGET_GROUP_NAME,
                Protocol="HTTP",
                Port=port,
                VpcId=vpc_id,
                TargetType="instance",
                HealthCheckEnabled=True,
                HealthCheckProtocol="HTTP",
                HealthCheckPort=str(port),
                HealthCheckPath="/health",
                Tags=[
                    {"Key": "Name", "Value": TARGET_GROUP_NAME},
                    {"Key": "Project", "Value": NAME_PREFIX}
                ]
            )
            tg_arn = response["TargetGroups"][0]["TargetGroupArn"]
            print(f"✓ Target Group created: {tg_arn}")
            return tg_arn
        except ClientError as e:
            print(f"Error creating target group: {e}")
            return None

    def register_target(self, target_group_arn: str, instance_id: str, port: int = APP_PORT) -> bool:
        """Register the instance with the target group"""
        try:
            self.elbv2.register_targets(
                TargetGroupArn=target_group_arn,
                Targets=[{"Id": instance_id, "Port": port}]
            )
            print(f"✓ Registered {instance_id}:{port} with target group")
            return True
        except ClientError as e:
            print(f"Error registering target: {e}")
            return False

    def create_listener(self, load_balancer_arn: str, target_group_arn: str, port: int = LISTENER_PORT) -> Optional[str]:
        """Create an HTTP listener forwarding to the target group"""
        try:
            print(f"Creating listener on port {port}")
            response = self.elbv2.create_listener(
                LoadBalancerArn=load_balancer_arn,
                Protocol="HTTP",
                Port=port,
                DefaultActions=[
                    {
                        "Type": "forward",
                        "TargetGroupArn": target_group_arn
                    }
                ]
            )
            listener_arn = response["Listeners"][0]["ListenerArn"]
            print(f"✓ Listener created: {listener_arn}")
            return listener_arn
        except ClientError as e:
            print(f"Error creating listener: {e}")
            return None

    def get_load_balancer_dns(self, load_balancer_arn: str) -> Optional[str]:
        """Get the DNS name of the load balancer"""
        try:
            response = self.elbv2.describe_load_balancers(
                LoadBalancerArns=[load_balancer_arn]
            )
            return response["LoadBalancers"][0]["DNSName"]
        except ClientError as e:
            print(f"Error getting ALB DNS: {e}")
            return None

    def deploy(self, vpc_id: str) -> bool:
        """Deploy the complete infrastructure"""
        print("=" * 60)
        print("Deploying Web Stack Infrastructure")
        print("=" * 60)
        print(f"Region: {self.region}")
        print(f"Instance type: {INSTANCE_TYPE}")
        print(f"Key pair: {KEY_NAME}")
        print(f"Application port: {APP_PORT}")
        print()

        # Nothing is created until the VPC and the address plan check out
        print("Step 1: Validating VPC...")
        vpc_info = self.validate_vpc(vpc_id)
        if not vpc_info:
            return False
        if not self.check_subnet_cidrs(vpc_info, PUBLIC_SUBNET_CIDRS + PRIVATE_SUBNET_CIDRS):
            print("✗ Subnet CIDRs do not fit the VPC")
            return False
        print()

        print("Step 2: Selecting availability zones...")
        zones = self.get_available_zones()[:2]
        if len(zones) < 2:
            print(f"✗ Need two available zones in {self.region}, found {len(zones)}")
            return False
        print(f"✓ Using zones: {zones}")
        print()

        print("Step 3: Creating subnets...")
        public_subnets = []
        private_subnets = []
        for index, zone in enumerate(zones):
            suffix = "ab"[index]
            subnet_id = self.create_subnet(
                vpc_id, PUBLIC_SUBNET_CIDRS[index], zone, f"{NAME_PREFIX}-public-{suffix}", public=True
            )
            if not subnet_id:
                print("✗ Failed to create public subnet")
                return False
            public_subnets.append(subnet_id)

            subnet_id = self.create_subnet(
                vpc_id, PRIVATE_SUBNET_CIDRS[index], zone, f"{NAME_PREFIX}-private-{suffix}"
            )
            if not subnet_id:
                print("✗ Failed to create private subnet")
                return False
            private_subnets.append(subnet_id)
        print()

        print("Step 4: Setting up Internet Gateway...")
        igw_id = self.ensure_internet_gateway(vpc_id)
        if not igw_id:
            print("✗ Failed to set up Internet Gateway")
            return False
        print()

        print("Step 5: Creating public route table...")
        public_rt = self.create_route_table(
            vpc_id, f"{NAME_PREFIX}-public-rt", public_subnets, gateway_id=igw_id
        )
        if not public_rt:
            print("✗ Failed to create public route table")
            return False
        print()

        print("Step 6: Creating NAT Gateway...")
        allocation_id = self.allocate_elastic_ip(f"{NAME_PREFIX}-nat-eip")
        if not allocation_id:
            print("✗ Failed to allocate Elastic IP")
            return False
        nat_id = self.create_nat_gateway(public_subnets[0], allocation_id)
        if not nat_id:
            print("✗ Failed to create NAT Gateway")
            return False
        if not self.wait_for_nat_gateway(nat_id):
            print("✗ NAT Gateway did not become available")
            return False
        print()

        print("Step 7: Creating private route table...")
        private_rt = self.create_route_table(
            vpc_id, f"{NAME_PREFIX}-private-rt", private_subnets, nat_gateway_id=nat_id
        )
        if not private_rt:
            print("✗ Failed to create private route table")
            return False
        print()

        print("Step 8: Creating security groups...")
        alb_sg = self.create_security_group(
            vpc_id, f"{NAME_PREFIX}-alb-sg", "HTTP from the internet to the load balancer"
        )
        if not alb_sg or not self.authorize_ingress(alb_sg, LISTENER_PORT, cidr="0.0.0.0/0"):
            print("✗ Failed to set up load balancer security group")
            return False
        web_sg = self.create_security_group(
            vpc_id, f"{NAME_PREFIX}-web-sg", "Application traffic from the load balancer"
        )
        if not web_sg:
            print("✗ Failed to create instance security group")
            return False
        if not self.authorize_ingress(web_sg, APP_PORT, source_group_id=alb_sg):
            print("✗ Failed to allow load balancer traffic to the instance")
            return False
        if not self.authorize_ingress(web_sg, 22, cidr=vpc_info["CidrBlock"]):
            print("✗ Failed to allow SSH to the instance")
            return False
        print()

        print("Step 9: Looking up AMI...")
        ami_id = self.get_latest_ami()
        if not ami_id:
            print("✗ Failed to find an AMI")
            return False
        print()

        print("Step 10: Launching web server instance...")
        instance_id = self.launch_instance(ami_id, private_subnets[0], web_sg, build_user_data())
        if not instance_id:
            print("✗ Failed to launch instance")
            return False
        if not self.wait_for_instance_running(instance_id):
            print("✗ Instance did not reach the running state")
            return False
        print()

        print("Step 11: Creating Application Load Balancer...")
        alb_arn = self.create_application_load_balancer(public_subnets, alb_sg)
        if not alb_arn:
            print("✗ Failed to create ALB")
            return False
        print()

        print("Step 12: Creating Target Group...")
        tg_arn = self.create_target_group(vpc_id)
        if not tg_arn:
            print("✗ Failed to create target group")
            return False
        if not self.register_target(tg_arn, instance_id):
            print("✗ Failed to register instance")
            return False
        print()

        print("Step 13: Creating Listener...")
        listener_arn = self.create_listener(alb_arn, tg_arn)
        if not listener_arn:
            print("✗ Failed to create listener")
            return False
        print()

        dns_name = self.get_load_balancer_dns(alb_arn)

        print("=" * 60)
        print("Deployment Complete!")
        print("=" * 60)
        print(f"Public subnets: {public_subnets}")
        print(f"Private subnets: {private_subnets}")
        print(f"Internet Gateway: {igw_id}")
        print(f"NAT Gateway: {nat_id}")
        print(f"Security groups: ALB {alb_sg}, instance {web_sg}")
        print(f"Instance: {instance_id}")
        print(f"Application Load Balancer ARN: {alb_arn}")
        print(f"Target Group ARN: {tg_arn}")
        if dns_name:
            print(f"URL: http://{dns_name}/")
        print()
        print("The instance installs the web server on first boot; the target")
        print("turns healthy a few minutes after launch.")
        return True


def main():
    """Main entry point"""
    # Verify AWS credentials are available
    if boto3.Session().get_credentials() is None:
        print("Error: AWS credentials not found")
        print("Configure them with `aws configure` or export AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY")
        sys.exit(1)

    vpc_id = VPC_ID
    if len(sys.argv) >= 2:
        vpc_id = sys.argv[1]
        print(f"Using VPC ID from command line: {vpc_id}")

    infra = AWSInfrastructure()
    if infra.deploy(vpc_id):
        print("\n✓ Infrastructure deployment completed successfully")
    else:
        print("\n✗ Infrastructure deployment failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
