"""
Built-in standard control catalog: ISO/IEC 27001:2022 Annex A and the SOC 2
Trust Services Criteria (common criteria).

Rows are (framework_code, control_id, category, title).
"""

FRAMEWORK_NAMES = {
    "iso-27001": ("ISO/IEC 27001", "2022"),
    "soc-2": ("SOC 2 Type II", "2017"),
}

_ISO_ORGANIZATIONAL = (
    ("A.5.1", "Policies for information security"),
    ("A.5.2", "Information security roles and responsibilities"),
    ("A.5.3", "Segregation of duties"),
    ("A.5.4", "Management responsibilities"),
    ("A.5.5", "Contact with authorities"),
    ("A.5.6", "Contact with special interest groups"),
    ("A.5.7", "Threat intelligence"),
    ("A.5.8", "Information security in project management"),
    ("A.5.9", "Inventory of information and other associated assets"),
    ("A.5.10", "Acceptable use of information and other associated assets"),
    ("A.5.11", "Return of assets"),
    ("A.5.12", "Classification of information"),
    ("A.5.13", "Labelling of information"),
    ("A.5.14", "Information transfer"),
    ("A.5.15", "Access control"),
    ("A.5.16", "Identity management"),
    ("A.5.17", "Authentication information"),
    ("A.5.18", "Access rights"),
    ("A.5.19", "Information security in supplier relationships"),
    ("A.5.20", "Addressing information security within supplier agreements"),
    ("A.5.21", "Managing information security in the ICT supply chain"),
    ("A.5.22", "Monitoring, review and change management of supplier services"),
    ("A.5.23", "Information security for use of cloud services"),
    ("A.5.24", "Information security incident management planning and preparation"),
    ("A.5.25", "Assessment and decision on information security events"),
    ("A.5.26", "Response to information security incidents"),
    ("A.5.27", "Learning from information security incidents"),
    ("A.5.28", "Collection of evidence"),
    ("A.5.29", "Information security during disruption"),
    ("A.5.30", "ICT readiness for business continuity"),
    ("A.5.31", "Legal, statutory, regulatory and contractual requirements"),
    ("A.5.32", "Intellectual property rights"),
    ("A.5.33", "Protection of records"),
    ("A.5.34", "Privacy and protection of personal identifiable information (PII)"),
    ("A.5.35", "Independent review of information security"),
    ("A.5.36", "Compliance with policies, rules and standards for information security"),
    ("A.5.37", "Documented operating procedures"),
)

_ISO_PEOPLE = (
    ("A.6.1", "Screening"),
    ("A.6.2", "Terms and conditions of employment"),
    ("A.6.3", "Information security awareness, education and training"),
    ("A.6.4", "Disciplinary process"),
    ("A.6.5", "Responsibilities after termination or change of employment"),
    ("A.6.6", "Confidentiality or non-disclosure agreements"),
    ("A.6.7", "Remote working"),
    ("A.6.8", "Information security event reporting"),
)

_ISO_PHYSICAL = (
    ("A.7.1", "Physical security perimeters"),
    ("A.7.2", "Physical entry"),
    ("A.7.3", "Securing offices, rooms and facilities"),
    ("A.7.4", "Physical security monitoring"),
    ("A.7.5", "Protecting against physical and environmental threats"),
    ("A.7.6", "Working in secure areas"),
    ("A.7.7", "Clear desk and clear screen"),
    ("A.7.8", "Equipment siting and protection"),
    ("A.7.9", "Security of assets off-premises"),
    ("A.7.10", "Storage media"),
    ("A.7.11", "Supporting utilities"),
    ("A.7.12", "Cabling security"),
    ("A.7.13", "Equipment maintenance"),
    ("A.7.14", "Secure disposal or re-use of equipment"),
)

_ISO_TECHNOLOGICAL = (
    ("A.8.1", "User endpoint devices"),
    ("A.8.2", "Privileged access rights"),
    ("A.8.3", "Information access restriction"),
    ("A.8.4", "Access to source code"),
    ("A.8.5", "Secure authentication"),
    ("A.8.6", "Capacity management"),
    ("A.8.7", "Protection against malware"),
    ("A.8.8", "Management of technical vulnerabilities"),
    ("A.8.9", "Configuration management"),
    ("A.8.10", "Information deletion"),
    ("A.8.11", "Data masking"),
    ("A.8.12", "Data leakage prevention"),
    ("A.8.13", "Information backup"),
    ("A.8.14", "Redundancy of information processing facilities"),
    ("A.8.15", "Logging"),
    ("A.8.16", "Monitoring activities"),
    ("A.8.17", "Clock synchronization"),
    ("A.8.18", "Use of privileged utility programs"),
    ("A.8.19", "Installation of software on operational systems"),
    ("A.8.20", "Networks security"),
    ("A.8.21", "Security of network services"),
    ("A.8.22", "Segregation of networks"),
    ("A.8.23", "Web filtering"),
    ("A.8.24", "Use of cryptography"),
    ("A.8.25", "Secure development life cycle"),
    ("A.8.26", "Application security requirements"),
    ("A.8.27", "Secure system architecture and engineering principles"),
    ("A.8.28", "Secure coding"),
    ("A.8.29", "Security testing in development and acceptance"),
    ("A.8.30", "Outsourced development"),
    ("A.8.31", "Separation of development, test and production environments"),
    ("A.8.32", "Change management"),
    ("A.8.33", "Test information"),
    ("A.8.34", "Protection of information systems during audit testing"),
)

_SOC2_COMMON_CRITERIA = (
    ("CC1.1", "Control Environment", "Demonstrates commitment to integrity and ethical values"),
    ("CC1.2", "Control Environment", "Board exercises oversight responsibility"),
    ("CC1.3", "Control Environment", "Establishes structure, authority and responsibility"),
    ("CC1.4", "Control Environment", "Demonstrates commitment to competence"),
    ("CC1.5", "Control Environment", "Enforces accountability"),
    ("CC2.1", "Communication and Information", "Uses relevant, quality information"),
    ("CC2.2", "Communication and Information", "Communicates internally"),
    ("CC2.3", "Communication and Information", "Communicates externally"),
    ("CC3.1", "Risk Assessment", "Specifies suitable objectives"),
    ("CC3.2", "Risk Assessment", "Identifies and analyzes risk"),
    ("CC3.3", "Risk Assessment", "Assesses fraud risk"),
    ("CC3.4", "Risk Assessment", "Identifies and analyzes significant change"),
    ("CC4.1", "Monitoring Activities", "Conducts ongoing and/or separate evaluations"),
    ("CC4.2", "Monitoring Activities", "Evaluates and communicates deficiencies"),
    ("CC5.1", "Control Activities", "Selects and develops control activities"),
    ("CC5.2", "Control Activities", "Selects and develops general controls over technology"),
    ("CC5.3", "Control Activities", "Deploys through policies and procedures"),
    ("CC6.1", "Logical and Physical Access Controls", "Implements logical access security software, infrastructure and architectures"),
    ("CC6.2", "Logical and Physical Access Controls", "Registers and authorizes new users prior to issuing credentials"),
    ("CC6.3", "Logical and Physical Access Controls", "Authorizes, modifies or removes access based on roles"),
    ("CC6.4", "Logical and Physical Access Controls", "Restricts physical access to facilities and protected assets"),
    ("CC6.5", "Logical and Physical Access Controls", "Discontinues protections over physical assets only after data is removed"),
    ("CC6.6", "Logical and Physical Access Controls", "Implements measures against threats from outside system boundaries"),
    ("CC6.7", "Logical and Physical Access Controls", "Restricts transmission, movement and removal of information"),
    ("CC6.8", "Logical and Physical Access Controls", "Prevents or detects unauthorized or malicious software"),
    ("CC7.1", "System Operations", "Detects configuration changes and newly discovered vulnerabilities"),
    ("CC7.2", "System Operations", "Monitors system components for anomalies"),
    ("CC7.3", "System Operations", "Evaluates security events"),
    ("CC7.4", "System Operations", "Responds to identified security incidents"),
    ("CC7.5", "System Operations", "Recovers from identified security incidents"),
    ("CC8.1", "Change Management", "Authorizes, designs, tests, approves and implements changes"),
    ("CC9.1", "Risk Mitigation", "Identifies and develops risk mitigation for business disruptions"),
    ("CC9.2", "Risk Mitigation", "Assesses and manages risks associated with vendors and business partners"),
)

STANDARD_CONTROLS: tuple[tuple[str, str, str, str], ...] = (
    *(("iso-27001", cid, "Organizational controls", title) for cid, title in _ISO_ORGANIZATIONAL),
    *(("iso-27001", cid, "People controls", title) for cid, title in _ISO_PEOPLE),
    *(("iso-27001", cid, "Physical controls", title) for cid, title in _ISO_PHYSICAL),
    *(("iso-27001", cid, "Technological controls", title) for cid, title in _ISO_TECHNOLOGICAL),
    *(("soc-2", cid, category, title) for cid, category, title in _SOC2_COMMON_CRITERIA),
)

# ISO/IEC 27001:2022 management system clauses. Rows are (clause_id, parent_clause_id, category, title).
_ISO_CLAUSES = (
    ("4", None, "Context", "Context of the organization"),
    ("4.1", "4", "Context", "Understanding the organization and its context"),
    ("4.2", "4", "Context", "Understanding the needs and expectations of interested parties"),
    ("4.3", "4", "Context", "Determining the scope of the information security management system"),
    ("4.4", "4", "Context", "Information security management system"),
    ("5", None, "Leadership", "Leadership"),
    ("5.1", "5", "Leadership", "Leadership and commitment"),
    ("5.2", "5", "Leadership", "Policy"),
    ("5.3", "5", "Leadership", "Organizational roles, responsibilities and authorities"),
    ("6", None, "Planning", "Planning"),
    ("6.1", "6", "Planning", "Actions to address risks and opportunities"),
    ("6.1.1", "6.1", "Planning", "General"),
    ("6.1.2", "6.1", "Planning", "Information security risk assessment"),
    ("6.1.3", "6.1", "Planning", "Information security risk treatment"),
    ("6.2", "6", "Planning", "Information security objectives and planning to achieve them"),
    ("6.3", "6", "Planning", "Planning of changes"),
    ("7", None, "Support", "Support"),
    ("7.1", "7", "Support", "Resources"),
    ("7.2", "7", "Support", "Competence"),
    ("7.3", "7", "Support", "Awareness"),
    ("7.4", "7", "Support", "Communication"),
    ("7.5", "7", "Support", "Documented information"),
    ("7.5.1", "7.5", "Support", "General"),
    ("7.5.2", "7.5", "Support", "Creating and updating"),
    ("7.5.3", "7.5", "Support", "Control of documented information"),
    ("8", None, "Operation", "Operation"),
    ("8.1", "8", "Operation", "Operational planning and control"),
    ("8.2", "8", "Operation", "Information security risk assessment"),
    ("8.3", "8", "Operation", "Information security risk treatment"),
    ("9", None, "Performance evaluation", "Performance evaluation"),
    ("9.1", "9", "Performance evaluation", "Monitoring, measurement, analysis and evaluation"),
    ("9.2", "9", "Performance evaluation", "Internal audit"),
    ("9.2.1", "9.2", "Performance evaluation", "General"),
    ("9.2.2", "9.2", "Performance evaluation", "Internal audit programme"),
    ("9.3", "9", "Performance evaluation", "Management review"),
    ("9.3.1", "9.3", "Performance evaluation", "General"),
    ("9.3.2", "9.3", "Performance evaluation", "Management review inputs"),
    ("9.3.3", "9.3", "Performance evaluation", "Management review results"),
    ("10", None, "Improvement", "Improvement"),
    ("10.1", "10", "Improvement", "Continual improvement"),
    ("10.2", "10", "Improvement", "Nonconformity and corrective action"),
)

STANDARD_CLAUSES: tuple[tuple[str, str, str | None, str, str], ...] = tuple(
    ("iso-27001", cid, parent, category, title) for cid, parent, category, title in _ISO_CLAUSES
)
